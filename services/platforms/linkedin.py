"""
LinkedIn member adapter (OpenID userinfo + UGC Posts API)
"""

from typing import Any, Dict, List
from urllib.parse import quote

from models.database import PlatformAccount
from schemas.social_media import (
    ContentConstraints,
    MediaItem,
    PostMetrics,
    PreparedContent,
    ProfileData,
    PublishResult,
)
from .base import ApiSession, PlatformAdapter

API_URL = "https://api.linkedin.com/v2"
RESTLI_HEADERS = {"X-Restli-Protocol-Version": "2.0.0"}


class LinkedInAdapter(PlatformAdapter):
    """Posts on behalf of a member; refresh tokens are reused until they expire"""

    platform = "linkedin"
    display_name = "LinkedIn"
    authorize_url = "https://www.linkedin.com/oauth/v2/authorization"
    token_url = "https://www.linkedin.com/oauth/v2/accessToken"
    revoke_url = "https://www.linkedin.com/oauth/v2/revoke"
    api_base_url = API_URL
    default_scopes = ["openid", "profile", "email", "w_member_social"]
    constraints = ContentConstraints(
        max_chars=3000,
        max_media=20,
        media_types=["image", "video"],
        max_image_bytes=36 * 1024 * 1024,
        max_video_bytes=5 * 1024 * 1024 * 1024,
        max_video_seconds=10 * 60,
    )
    inline_links = False

    def _author(self, account: PlatformAccount) -> str:
        return f"urn:li:person:{account.external_account_id}"

    async def fetch_profile(self, api: ApiSession, account: PlatformAccount) -> ProfileData:
        data = await api.get(f"{API_URL}/userinfo")
        return ProfileData(
            external_account_id=data["sub"],
            handle=data.get("email") or data.get("name"),
            display_name=data.get("name"),
            avatar_url=data.get("picture"),
        )

    async def _register_upload(self, api: ApiSession, account: PlatformAccount, item: MediaItem) -> str:
        recipe = "urn:li:digitalmediaRecipe:feedshare-video" if item.type == "video" else "urn:li:digitalmediaRecipe:feedshare-image"
        registration = await api.post(
            f"{API_URL}/assets?action=registerUpload",
            json={
                "registerUploadRequest": {
                    "recipes": [recipe],
                    "owner": self._author(account),
                    "serviceRelationships": [
                        {"relationshipType": "OWNER", "identifier": "urn:li:userGeneratedContent"}
                    ],
                }
            },
            headers=RESTLI_HEADERS,
        )
        value = registration["value"]
        upload_url = value["uploadMechanism"][
            "com.linkedin.digitalmedia.uploading.MediaUploadHttpRequest"
        ]["uploadUrl"]
        payload, content_type = await self.download(item)
        await api.checked("PUT", upload_url, content=payload, headers={"Content-Type": content_type})
        return value["asset"]

    async def publish(self, api: ApiSession, account: PlatformAccount, content: PreparedContent) -> PublishResult:
        share: Dict[str, Any] = {
            "shareCommentary": {"text": content.text},
            "shareMediaCategory": "NONE",
        }
        if content.media:
            assets: List[str] = [await self._register_upload(api, account, item) for item in content.media]
            share["shareMediaCategory"] = "VIDEO" if content.media[0].type == "video" else "IMAGE"
            share["media"] = [{"status": "READY", "media": asset} for asset in assets]
        elif content.link_url:
            share["shareMediaCategory"] = "ARTICLE"
            share["media"] = [{"status": "READY", "originalUrl": content.link_url}]

        response = await api.checked(
            "POST",
            f"{API_URL}/ugcPosts",
            json={
                "author": self._author(account),
                "lifecycleState": "PUBLISHED",
                "specificContent": {"com.linkedin.ugc.ShareContent": share},
                "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
            },
            headers=RESTLI_HEADERS,
        )
        post_urn = response.headers.get("x-restli-id")
        if not post_urn and response.content:
            post_urn = response.json().get("id")
        return PublishResult(
            platform_content_id=post_urn,
            platform_url=f"https://www.linkedin.com/feed/update/{post_urn}",
        )

    async def fetch_post_metrics(
        self, api: ApiSession, account: PlatformAccount, platform_content_id: str
    ) -> PostMetrics:
        data = await api.get(
            f"{API_URL}/socialActions/{quote(platform_content_id, safe='')}",
            headers=RESTLI_HEADERS,
        )
        return PostMetrics(
            likes=(data.get("likesSummary") or {}).get("totalLikes", 0),
            comments=(data.get("commentsSummary") or {}).get("aggregatedTotalComments", 0),
        )

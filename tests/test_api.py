"""
HTTP surface: OAuth callback redirects, auth scoping, posts and cron endpoints
"""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import pytest_asyncio

from conftest import CRON_SECRET, SITE_ID, USER_ID
from main import app
from models.database import utcnow
from services.oauth import oauth_coordinator
from utils.auth import issue_token
from utils.task_queue import task_queue

TWITTER_TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
TWITTER_ME_URL = "https://api.twitter.com/2/users/me"
TWEETS_URL = "https://api.twitter.com/2/tweets"


@pytest_asyncio.fixture
async def client(db):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {issue_token(USER_ID, SITE_ID)}"}


def redirect_params(response: httpx.Response) -> dict:
    location = response.headers["location"]
    assert location.startswith("https://dashboard.test/social/accounts?")
    return {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}


class TestOAuthCallback:
    """The callback always lands the user back on the dashboard"""

    async def test_unknown_state_redirects_with_error(self, client):
        response = await client.get("/api/v1/platforms/oauth/callback", params={"code": "c", "state": "nope"})

        assert response.status_code == 302
        assert redirect_params(response) == {"error": "invalid_state"}

    async def test_user_declined_at_provider(self, client):
        start = await oauth_coordinator.initiate("twitter", SITE_ID, USER_ID)

        response = await client.get(
            "/api/v1/platforms/oauth/callback", params={"error": "access_denied", "state": start.state}
        )

        assert redirect_params(response) == {"error": "access_denied"}

    async def test_expired_state(self, client):
        start = await oauth_coordinator.initiate("twitter", SITE_ID, USER_ID, now=utcnow() - timedelta(hours=1))

        response = await client.get("/api/v1/platforms/oauth/callback", params={"code": "c", "state": start.state})

        assert redirect_params(response) == {"error": "expired_state"}

    async def test_exchange_failure(self, client, platform_api):
        platform_api.on("POST", TWITTER_TOKEN_URL, {"status": 400, "json": {"error": "invalid_grant"}})
        start = await oauth_coordinator.initiate("twitter", SITE_ID, USER_ID)

        response = await client.get("/api/v1/platforms/oauth/callback", params={"code": "c", "state": start.state})

        assert redirect_params(response) == {"error": "exchange_failed"}

    async def test_successful_connection(self, client, platform_api, auth_headers):
        platform_api.on("POST", TWITTER_TOKEN_URL, {"json": {"access_token": "a", "refresh_token": "r", "expires_in": 7200}})
        platform_api.on("GET", TWITTER_ME_URL, {"json": {"data": {"id": "42", "username": "brand"}}})
        connect = await client.post("/api/v1/platforms/twitter/connect", headers=auth_headers)
        state = connect.json()["state"]

        response = await client.get("/api/v1/platforms/oauth/callback", params={"code": "c", "state": state})

        assert redirect_params(response) == {"connected": "twitter"}
        accounts = (await client.get("/api/v1/accounts", headers=auth_headers)).json()
        assert [a["handle"] for a in accounts] == ["brand"]
        assert "access_token" not in accounts[0]
        assert "refresh_token" not in accounts[0]


class TestPlatformsAndAccounts:
    async def test_requires_bearer_token(self, client):
        response = await client.get("/api/v1/accounts")

        assert response.status_code in (401, 403)

    async def test_lists_configured_platforms(self, client, auth_headers):
        response = await client.get("/api/v1/platforms", headers=auth_headers)

        platforms = {p["platform"] for p in response.json()}
        assert "twitter" in platforms
        assert "linkedin" not in platforms

    async def test_unconfigured_platform_connect_is_rejected(self, client, auth_headers):
        response = await client.post("/api/v1/platforms/linkedin/connect", headers=auth_headers)

        assert response.status_code == 400

    async def test_accounts_are_site_scoped(self, client, make_account, auth_headers):
        other = await make_account("twitter", site_id="another-site")

        response = await client.get(f"/api/v1/accounts/{other.id}", headers=auth_headers)

        assert response.status_code == 404

    async def test_disconnect(self, client, make_account, platform_api, auth_headers):
        account = await make_account("twitter")
        platform_api.on("POST", "https://api.twitter.com/2/oauth2/revoke", {"json": {}})

        response = await client.delete(f"/api/v1/accounts/{account.id}", headers=auth_headers)

        assert response.status_code == 204
        assert (await client.get(f"/api/v1/accounts/{account.id}", headers=auth_headers)).status_code == 404


class TestPosts:
    async def test_create_rejects_unknown_targets(self, client, auth_headers):
        response = await client.post(
            "/api/v1/posts",
            headers=auth_headers,
            json={"content": "hi", "target_account_ids": ["00000000-0000-0000-0000-000000000001"]},
        )

        assert response.status_code == 400

    async def test_create_schedule_and_publish_now(self, client, make_account, platform_api, auth_headers):
        account = await make_account("twitter")
        platform_api.on("POST", TWEETS_URL, {"json": {"data": {"id": "1811"}}})
        scheduled_at = (utcnow() + timedelta(days=1)).isoformat() + "Z"

        created = await client.post(
            "/api/v1/posts",
            headers=auth_headers,
            json={"content": "Big news", "target_account_ids": [str(account.id)], "scheduled_at": scheduled_at},
        )
        assert created.status_code == 201
        assert created.json()["status"] == "scheduled"
        post_id = created.json()["id"]

        published = await client.post(f"/api/v1/posts/{post_id}/publish", headers=auth_headers)
        assert published.json()["status"] == "published"

        fetched = (await client.get(f"/api/v1/posts/{post_id}", headers=auth_headers)).json()
        assert fetched["status"] == "published"
        assert fetched["attempts"][0]["platform_content_id"] == "1811"

        # Publishing has happened; the post is no longer editable
        edit = await client.patch(f"/api/v1/posts/{post_id}", headers=auth_headers, json={"content": "changed"})
        assert edit.status_code == 409

    async def test_unschedule_returns_post_to_draft(self, client, make_account, auth_headers):
        account = await make_account("twitter")
        created = await client.post(
            "/api/v1/posts",
            headers=auth_headers,
            json={
                "content": "Later",
                "target_account_ids": [str(account.id)],
                "scheduled_at": (utcnow() + timedelta(hours=3)).isoformat(),
            },
        )

        response = await client.patch(
            f"/api/v1/posts/{created.json()['id']}", headers=auth_headers, json={"unschedule": True}
        )

        assert response.json()["status"] == "draft"
        assert response.json()["scheduled_at"] is None


class TestCronAndHealth:
    async def test_cron_requires_secret(self, client):
        assert (await client.post("/api/v1/cron/tick")).status_code == 401
        assert (await client.post("/api/v1/cron/tick", headers={"X-Cron-Secret": "wrong"})).status_code == 401

    async def test_cron_tick(self, client):
        response = await client.post("/api/v1/cron/tick", headers={"X-Cron-Secret": CRON_SECRET})

        assert response.status_code == 200
        assert response.json()["due"] == 0

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["services"]["database"] == "healthy"


class TestBackgroundJobs:
    """The worker queue is replaced; only the hand-off is under test"""

    @pytest.fixture
    def queued(self, monkeypatch):
        jobs = []

        async def enqueue_publish(post_id):
            jobs.append(("publish", post_id))
            return f"publish:{post_id}"

        async def enqueue_account_sync(account_id):
            jobs.append(("sync", account_id))
            return "job-1"

        monkeypatch.setattr(task_queue, "enqueue_publish", enqueue_publish)
        monkeypatch.setattr(task_queue, "enqueue_account_sync", enqueue_account_sync)
        return jobs

    async def test_background_publish_claims_then_enqueues(self, client, make_account, platform_api, auth_headers, queued):
        account = await make_account("twitter")
        created = await client.post(
            "/api/v1/posts", headers=auth_headers, json={"content": "Queued", "target_account_ids": [str(account.id)]}
        )
        post_id = created.json()["id"]

        response = await client.post(f"/api/v1/posts/{post_id}/publish", params={"background": "true"}, headers=auth_headers)

        assert response.json()["status"] == "publishing"
        assert [(kind, str(value)) for kind, value in queued] == [("publish", post_id)]
        assert platform_api.requests == []

    async def test_account_sync_is_queued(self, client, make_account, auth_headers, queued):
        account = await make_account("twitter")

        response = await client.post(f"/api/v1/analytics/accounts/{account.id}/sync", headers=auth_headers)

        assert response.status_code == 202
        assert response.json() == {"job_id": "job-1"}
        assert queued == [("sync", account.id)]

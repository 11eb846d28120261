"""
Pytest configuration and shared fixtures for SocialBridge tests
"""

import json
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from models.database import PlatformAccount, Post, PostStatus, utcnow
from utils.config import get_config
from utils.database import configure_engine, dispose_db, get_session
from utils.http_client import set_shared_client

SITE_ID = "site-1"
USER_ID = "user-1"
CRON_SECRET = "test-cron-secret"

TEST_ENV = {
    "ENVIRONMENT": "test",
    "JWT_SECRET_KEY": "test-jwt-secret-32-chars-long-456",
    "CRON_SECRET": CRON_SECRET,
    "APP_URL": "https://dashboard.test",
    "OAUTH_REDIRECT_URI": "https://api.test/api/v1/platforms/oauth/callback",
    "TWITTER_CLIENT_ID": "twitter-client",
    "TWITTER_CLIENT_SECRET": "twitter-secret",
    "LINKEDIN_CLIENT_ID": "",
    "LINKEDIN_CLIENT_SECRET": "",
    "TOKEN_REFRESH_MARGIN_SECONDS": "300",
    "PUBLISH_MAX_ATTEMPTS": "3",
    "PUBLISH_RETRY_BASE_SECONDS": "60",
}

Reply = Union[Dict[str, Any], Callable[[httpx.Request], Any]]


class FakePlatformAPI:
    """
    MockTransport handler standing in for every platform's HTTP API.

    Routes are keyed by method and URL without query string. Each route holds a
    queue of replies; the last reply repeats once the queue is down to one.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Reply]] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, url: str, *replies: Reply) -> None:
        self.routes.setdefault((method.upper(), url), []).extend(replies)

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if (r.method, self._key_url(r)) == (method.upper(), url)]

    @staticmethod
    def _key_url(request: httpx.Request) -> str:
        return f"{request.url.scheme}://{request.url.host}{request.url.path}"

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, self._key_url(request)))
        if not queue:
            return httpx.Response(404, json={"error": f"no route for {request.method} {request.url}"})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(reply):
            result = reply(request)
            if not isinstance(result, httpx.Response):
                result = await result
            return result
        return httpx.Response(
            reply.get("status", 200),
            json=reply.get("json", {}),
            headers=reply.get("headers"),
        )


def form_body(request: httpx.Request) -> Dict[str, str]:
    """Decode an application/x-www-form-urlencoded request body"""
    return dict(httpx.QueryParams(request.content.decode()))


def json_body(request: httpx.Request) -> Dict[str, Any]:
    return json.loads(request.content.decode())


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Known configuration for every test"""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh SQLite database per test, bound to the application's session factory"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'socialbridge.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    configure_engine(engine)
    yield engine
    await dispose_db()


@pytest_asyncio.fixture
async def platform_api():
    """Route every outbound platform call to a FakePlatformAPI"""
    fake = FakePlatformAPI()
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    set_shared_client(client)
    yield fake
    await client.aclose()
    set_shared_client(None)


@pytest.fixture
def make_account(db):
    """Insert a connected account; keyword arguments override the defaults"""

    async def factory(platform: str = "twitter", **overrides: Any) -> PlatformAccount:
        now = utcnow()
        values: Dict[str, Any] = {
            "site_id": SITE_ID,
            "created_by": USER_ID,
            "platform": platform,
            "external_account_id": uuid4().hex,
            "handle": f"{platform}_handle",
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "token_expires_at": now + timedelta(hours=2),
            "last_synced_at": now,
            "settings": {"instance": "mastodon.example"} if platform == "mastodon" else {},
        }
        values.update(overrides)
        account = PlatformAccount(**values)
        async with get_session() as session:
            session.add(account)
            await session.commit()
        return account

    return factory


@pytest.fixture
def make_post(db):
    """Insert a post targeting the given accounts"""

    async def factory(accounts: List[PlatformAccount], **overrides: Any) -> Post:
        values: Dict[str, Any] = {
            "site_id": SITE_ID,
            "created_by": USER_ID,
            "content": "Launch day! Our new release is live.",
            "target_account_ids": [str(account.id) for account in accounts],
            "status": PostStatus.DRAFT.value,
        }
        values.update(overrides)
        post = Post(**values)
        async with get_session() as session:
            session.add(post)
            await session.commit()
        return post

    return factory


async def reload(model, key) -> Optional[Any]:
    """Fresh copy of a row, bypassing any in-memory instance"""
    async with get_session() as session:
        return await session.get(model, key)

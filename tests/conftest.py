"""
Shared test fixtures and configuration for all tests.

This file is automatically loaded by pytest and provides common fixtures:
a fake clock, a scriptable fake platform served through httpx.MockTransport,
and factories for accounts and media.
"""
import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from urllib.parse import parse_qsl

import httpx
import pytest
import pytest_asyncio

# Set OAuth environment variables for testing BEFORE modules load
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TWITTER_CLIENT_ID", "test_twitter_client_id")
os.environ.setdefault("TWITTER_CLIENT_SECRET", "test_twitter_client_secret")
os.environ.setdefault("LINKEDIN_CLIENT_ID", "test_linkedin_client_id")
os.environ.setdefault("LINKEDIN_CLIENT_SECRET", "test_linkedin_client_secret")

from crosspost.config.settings import Settings
from crosspost.models import MediaAsset, MediaRole, OAuth1Credentials, Platform, SocialAccount
from crosspost.publishers.base import PublishSession
from crosspost.utils.clock import Clock

TWITTER_UPLOAD_URL = "https://upload.twitter.com/1.1/media/upload.json"
TWITTER_TWEETS_URL = "https://api.twitter.com/2/tweets"
LINKEDIN_API = "https://api.linkedin.com/v2"
INSTAGRAM_API = "https://graph.instagram.com"

JPEG_HEADER = b"\xff\xd8\xff\xe0"
PNG_HEADER = b"\x89PNG\r\n\x1a\n"


class FakeClock(Clock):
    """Virtual time: sleep() advances the clock instantly and records the wait."""

    def __init__(self, start: Optional[datetime] = None):
        self.start = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.elapsed = 0.0
        self.sleeps: List[float] = []

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    def monotonic(self) -> float:
        return self.elapsed

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.elapsed += seconds
        await asyncio.sleep(0)


class FakePlatform:
    """
    Scriptable HTTP backend.

    Routes match on method and URL without query string. A route answers
    with a fixed response, a callable, or a list of responses consumed in
    order (the last one repeats).
    """

    def __init__(self):
        self.routes: List[Tuple[str, str, object]] = []
        self.requests: List[httpx.Request] = []

    def on(self, method: str, url: str, responder) -> "FakePlatform":
        if isinstance(responder, list):
            responder = list(responder)
        self.routes.append((method.upper(), url, responder))
        return self

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method.upper() and str(r.url).split("?")[0] == url
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url).split("?")[0]
        for method, route_url, responder in self.routes:
            if method != request.method or route_url != url:
                continue
            if isinstance(responder, list):
                response = responder.pop(0) if len(responder) > 1 else responder[0]
            elif callable(responder):
                response = responder(request)
            else:
                response = responder
            return response
        return httpx.Response(404, json={"error": f"no route for {request.method} {url}"})


def form_body(request: httpx.Request) -> dict:
    return dict(parse_qsl(request.content.decode()))


def multipart_field(request: httpx.Request, name: str) -> Optional[str]:
    """Value of a simple multipart text field, or None."""
    marker = f'name="{name}"\r\n\r\n'.encode()
    body = request.content
    start = body.find(marker)
    if start == -1:
        return None
    start += len(marker)
    return body[start:body.index(b"\r\n", start)].decode()


@pytest.fixture
def settings():
    return Settings(
        ENVIRONMENT="test",
        TWITTER_CLIENT_ID="test_twitter_client_id",
        TWITTER_CLIENT_SECRET="test_twitter_client_secret",
        TWITTER_API_KEY="app_consumer_key",
        TWITTER_API_SECRET="app_consumer_secret",
        LINKEDIN_CLIENT_ID="test_linkedin_client_id",
        LINKEDIN_CLIENT_SECRET="test_linkedin_client_secret",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def platform_api():
    return FakePlatform()


@pytest_asyncio.fixture
async def http_client(platform_api):
    async with httpx.AsyncClient(transport=httpx.MockTransport(platform_api)) as client:
        yield client


def make_account(
    platform: Platform,
    account_id: str = "acct-1",
    user_id: str = "user-1",
    expires_in: Optional[int] = 3600,
    now: Optional[datetime] = None,
    **overrides,
) -> SocialAccount:
    now = now or FakeClock().now()
    data = dict(
        user_id=user_id,
        platform=platform,
        account_id=account_id,
        access_token=f"{platform.value}-access-{account_id}",
        refresh_token=f"{platform.value}-refresh-{account_id}",
        expires_at=now + timedelta(seconds=expires_in) if expires_in is not None else None,
    )
    data.update(overrides)
    return SocialAccount(**data)


def twitter_oauth1() -> OAuth1Credentials:
    return OAuth1Credentials(
        consumer_key="consumer-key",
        consumer_secret="consumer-secret",
        access_token="oauth1-token",
        access_token_secret="oauth1-token-secret",
    )


def jpeg_bytes(size: int) -> bytes:
    return JPEG_HEADER + b"\x00" * (size - len(JPEG_HEADER))


def image_asset(size: int = 1024, source_url: Optional[str] = None) -> MediaAsset:
    return MediaAsset(data=jpeg_bytes(size), mime_type="image/jpeg", role=MediaRole.IMAGE, source_url=source_url)


def video_asset(size: int = 2048, source_url: Optional[str] = None) -> MediaAsset:
    return MediaAsset(data=b"\x00" * size, mime_type="video/mp4", role=MediaRole.VIDEO, source_url=source_url)


def make_session(account: SocialAccount, client: httpx.AsyncClient, clock: Clock, deadline=None) -> PublishSession:
    return PublishSession(account=account, client=client, clock=clock, deadline=deadline)

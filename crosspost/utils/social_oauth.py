"""
Social Media OAuth Utilities - token refresh for Twitter/X, LinkedIn and Instagram

Each refresher exchanges a refresh credential for a new access token and
returns a ``TokenSet``. Failures raise ``AuthenticationException`` so the
token manager can mark the account for reconnection.
"""
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional

import httpx
from loguru import logger

from ..config.settings import Settings
from ..models import Platform, TokenSet
from ..publishers.exceptions import AuthenticationException, extract_error_message
from .clock import ensure_utc

TokenRefresher = Callable[[httpx.AsyncClient, str, Settings], Awaitable[TokenSet]]


def _parse_token_response(platform: str, response: httpx.Response) -> TokenSet:
    if response.status_code >= 400:
        raise AuthenticationException(
            f"{platform} token refresh failed: {extract_error_message(response)}",
            platform=platform,
            status_code=response.status_code,
        )
    try:
        tokens = response.json()
    except ValueError:
        raise AuthenticationException(f"{platform} token refresh returned an invalid body", platform=platform)
    if not isinstance(tokens, dict) or not tokens.get("access_token"):
        raise AuthenticationException(f"{platform} token refresh returned no access token", platform=platform)
    return TokenSet(
        access_token=tokens["access_token"],
        refresh_token=tokens.get("refresh_token"),
        expires_in=tokens.get("expires_in"),
    )


async def refresh_twitter_token(client: httpx.AsyncClient, refresh_token: str, settings: Settings) -> TokenSet:
    """
    Refresh Twitter OAuth 2.0 access token.

    Twitter rotates refresh tokens: the response carries a new one.

    Args:
        client: HTTP client
        refresh_token: Twitter refresh token
        settings: Settings carrying TWITTER_CLIENT_ID / TWITTER_CLIENT_SECRET

    Returns:
        TokenSet with the new tokens
    """
    if not settings.TWITTER_CLIENT_ID:
        raise AuthenticationException("Twitter OAuth not configured - missing TWITTER_CLIENT_ID", platform="twitter")

    token_data = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": settings.TWITTER_CLIENT_ID,
    }
    auth = None
    if settings.TWITTER_CLIENT_SECRET:
        auth = httpx.BasicAuth(settings.TWITTER_CLIENT_ID, settings.TWITTER_CLIENT_SECRET)

    response = await client.post(
        settings.TWITTER_TOKEN_URL,
        data=token_data,
        auth=auth,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    tokens = _parse_token_response("twitter", response)
    logger.info("Successfully refreshed Twitter token")
    return tokens


async def refresh_linkedin_token(client: httpx.AsyncClient, refresh_token: str, settings: Settings) -> TokenSet:
    """
    Refresh LinkedIn access token using refresh token.

    Note: LinkedIn only issues refresh tokens to approved partner apps;
    standard apps have no refresh token and must reconnect after 60 days.
    """
    token_data = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": settings.LINKEDIN_CLIENT_ID or "",
        "client_secret": settings.LINKEDIN_CLIENT_SECRET or "",
    }

    response = await client.post(settings.LINKEDIN_TOKEN_URL, data=token_data)
    tokens = _parse_token_response("linkedin", response)
    logger.info("Successfully refreshed LinkedIn token")
    return tokens


async def refresh_instagram_token(client: httpx.AsyncClient, refresh_token: str, settings: Settings) -> TokenSet:
    """
    Extend an Instagram long-lived token.

    Instagram refreshes the long-lived token itself (it is both the access
    token and the refresh credential); the result is valid for 60 days.
    """
    response = await client.get(
        settings.INSTAGRAM_REFRESH_URL,
        params={"grant_type": "ig_refresh_token", "access_token": refresh_token},
    )
    tokens = _parse_token_response("instagram", response)
    logger.info("Successfully refreshed Instagram token")
    return tokens


DEFAULT_REFRESHERS: Dict[Platform, TokenRefresher] = {
    Platform.TWITTER: refresh_twitter_token,
    Platform.LINKEDIN: refresh_linkedin_token,
    Platform.INSTAGRAM: refresh_instagram_token,
}


def is_token_expired(expires_at: Optional[datetime], now: datetime, buffer_seconds: int = 300) -> bool:
    """
    Check if token is expired or expiring within the buffer.

    Tokens without an expiry never expire. Naive datetimes are read as UTC.
    """
    if expires_at is None:
        return False
    return ensure_utc(now) >= ensure_utc(expires_at) - timedelta(seconds=buffer_seconds)


def calculate_token_expiry(expires_in: Optional[int], now: datetime) -> Optional[datetime]:
    if expires_in is None:
        return None
    return now + timedelta(seconds=int(expires_in))

"""
Token Lifecycle Manager

Hands out valid access tokens for connected accounts:
- Tokens still inside their lifetime are returned as stored
- Expired tokens are refreshed through the platform's token endpoint and the
  new tokens are written through to the credential store
- Accounts that cannot be refreshed are marked inactive so the user is asked
  to reconnect

Refreshes for one account are serialized: concurrent callers wait for the
first refresh and reuse its result.
"""
import asyncio
from typing import Dict, Optional

import httpx
from loguru import logger

from ..config.settings import Settings, get_settings
from ..models import (
    AccountTarget,
    Platform,
    SocialAccount,
    TokenReport,
    TokenSet,
    TokenValidationResult,
)
from ..publishers.exceptions import AuthenticationException
from ..storage.credential_store import AccountKey, CredentialStore
from ..utils.clock import Clock
from ..utils.social_oauth import DEFAULT_REFRESHERS, TokenRefresher, calculate_token_expiry, is_token_expired


def refresh_credential(account: SocialAccount) -> Optional[str]:
    """
    The credential a platform accepts for refreshing this account.

    Instagram long-lived tokens refresh themselves, so the access token
    doubles as the refresh credential.
    """
    if account.refresh_token:
        return account.refresh_token
    if account.platform == Platform.INSTAGRAM:
        return account.access_token or None
    return None


class TokenLifecycleManager:
    """
    Validate, refresh and invalidate OAuth tokens.

    Args:
        store: Credential store holding the accounts
        settings: Engine settings (refresh endpoints, client credentials)
        client: Shared HTTP client; a short-lived one is created per refresh
            when omitted
        refreshers: Per-platform refresh functions overriding the defaults
        clock: Time source for expiry checks
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        refreshers: Optional[Dict[Platform, TokenRefresher]] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.client = client
        self.refreshers: Dict[Platform, TokenRefresher] = dict(DEFAULT_REFRESHERS)
        if refreshers:
            self.refreshers.update(refreshers)
        self.clock = clock or Clock()
        self._locks: Dict[AccountKey, asyncio.Lock] = {}

    def _lock_for(self, key: AccountKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def is_expired(self, account: SocialAccount) -> bool:
        return is_token_expired(account.expires_at, self.clock.now(), self.settings.TOKEN_REFRESH_BUFFER_SECONDS)

    @staticmethod
    def _ensure_usable(account: Optional[SocialAccount], platform: Platform, account_id: str) -> SocialAccount:
        if account is None:
            raise AuthenticationException(f"{platform.value} account {account_id} is not connected", platform=platform.value)
        if not account.is_active:
            reason = account.error_message or "account is inactive"
            raise AuthenticationException(
                f"{platform.value} account {account_id} needs reconnection: {reason}", platform=platform.value
            )
        return account

    async def get_valid_account(self, user_id: str, platform: Platform, account_id: str) -> SocialAccount:
        """
        Load an account with a usable access token, refreshing it if expired.

        Returns:
            The account carrying the current access token

        Raises:
            AuthenticationException: Account missing, inactive, or not
                refreshable; ``needs_reconnection`` is set
        """
        platform = Platform(platform)
        account = self._ensure_usable(await self.store.load(user_id, platform, account_id), platform, account_id)
        if not self.is_expired(account):
            return account

        async with self._lock_for(account.key):
            # Another caller may have refreshed while we waited
            account = self._ensure_usable(await self.store.load(user_id, platform, account_id), platform, account_id)
            if not self.is_expired(account):
                return account
            return await self._refresh(account)

    async def get_valid_token(self, user_id: str, platform: Platform, account_id: str) -> str:
        """Return a valid access token for the account (see ``get_valid_account``)."""
        account = await self.get_valid_account(user_id, platform, account_id)
        return account.access_token

    async def _call_refresher(self, refresher: TokenRefresher, credential: str) -> TokenSet:
        if self.client is not None:
            return await refresher(self.client, credential, self.settings)
        async with httpx.AsyncClient(timeout=self.settings.HTTP_TIMEOUT_SECONDS) as client:
            return await refresher(client, credential, self.settings)

    async def _refresh(self, account: SocialAccount) -> SocialAccount:
        platform = account.platform
        credential = refresh_credential(account)
        refresher = self.refreshers.get(platform)

        if not credential or refresher is None:
            reason = "Token expired and cannot be refreshed"
            await self.invalidate(account, reason)
            raise AuthenticationException(
                f"{platform.value} account {account.account_id}: {reason}", platform=platform.value
            )

        logger.info(f"Refreshing {platform.value} token for account {account.account_id}")
        try:
            tokens = await self._call_refresher(refresher, credential)
        except Exception as e:
            logger.error(f"Token refresh failed for {platform.value} account {account.account_id}: {str(e)}")
            await self.invalidate(account, f"Token refresh failed: {str(e)}")
            raise AuthenticationException(
                f"{platform.value} token refresh failed: {str(e)}", platform=platform.value
            ) from e

        refreshed = account.model_copy(
            update={
                "access_token": tokens.access_token,
                # Keep the old refresh token when the platform does not rotate it
                "refresh_token": tokens.refresh_token or account.refresh_token,
                "expires_at": calculate_token_expiry(tokens.expires_in, self.clock.now()),
                "error_message": None,
            }
        )
        await self.store.save(refreshed)
        logger.info(f"Refreshed {platform.value} token for account {account.account_id}")
        return refreshed

    async def invalidate(self, account: SocialAccount, reason: str) -> None:
        """Mark the account inactive and persist it immediately."""
        logger.warning(f"Marking {account.platform.value} account {account.account_id} inactive: {reason}")
        await self.store.deactivate(account.user_id, account.platform, account.account_id, reason)

    async def mark_used(self, account: SocialAccount) -> None:
        """Stamp last_used_at on the stored record after a successful publish."""
        async with self._lock_for(account.key):
            current = await self.store.load(account.user_id, account.platform, account.account_id)
            if current is None:
                return
            await self.store.save(current.model_copy(update={"last_used_at": self.clock.now()}))

    async def validate_and_refresh(self, user_id: str, platform: Platform, account_id: str) -> TokenValidationResult:
        """
        Validate the account's token, refreshing it when needed. Never raises.

        Returns:
            TokenValidationResult with the token or the error
        """
        try:
            account = await self.get_valid_account(user_id, platform, account_id)
        except AuthenticationException as e:
            return TokenValidationResult(is_valid=False, error=str(e), needs_reconnection=True)
        except Exception as e:
            logger.error(f"Token validation failed for {Platform(platform).value} account {account_id}: {str(e)}")
            return TokenValidationResult(is_valid=False, error=str(e))
        return TokenValidationResult(is_valid=True, access_token=account.access_token)

    async def validate_all_user_tokens(self, user_id: str) -> TokenReport:
        """
        Validate every connected account of a user before a bulk publish.

        Inactive accounts land in ``needs_reconnection`` without a refresh
        attempt.

        Returns:
            TokenReport with disjoint valid / invalid / needs_reconnection lists
        """
        report = TokenReport()
        accounts = await self.store.list_accounts(user_id, active_only=False)
        active = [account for account in accounts if account.is_active]
        report.needs_reconnection.extend(account.target for account in accounts if not account.is_active)

        results = await asyncio.gather(
            *(self.validate_and_refresh(user_id, account.platform, account.account_id) for account in active)
        )

        for account, result in zip(active, results):
            target = AccountTarget(platform=account.platform, account_id=account.account_id)
            if result.is_valid:
                report.valid.append(target)
            elif result.needs_reconnection:
                report.needs_reconnection.append(target)
            else:
                report.invalid.append(target)

        logger.info(
            f"Validated tokens for user {user_id}: {len(report.valid)} valid, "
            f"{len(report.invalid)} invalid, {len(report.needs_reconnection)} need reconnection"
        )
        return report

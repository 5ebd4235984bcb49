"""
Credential Store - persistence boundary for connected social accounts

The token manager reads and writes accounts only through ``CredentialStore``.
Every refresh or invalidation is written through immediately.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from ..models import Platform, SocialAccount

AccountKey = Tuple[str, Platform, str]


class CredentialStore(ABC):
    """Async interface over wherever accounts and tokens live."""

    @abstractmethod
    async def load(self, user_id: str, platform: Platform, account_id: str) -> Optional[SocialAccount]:
        """Return the account, or None when it is not connected."""

    @abstractmethod
    async def save(self, account: SocialAccount) -> None:
        """Insert or update the account identified by its key."""

    @abstractmethod
    async def deactivate(
        self, user_id: str, platform: Platform, account_id: str, reason: Optional[str] = None
    ) -> None:
        """Mark the account inactive so the user is asked to reconnect."""

    @abstractmethod
    async def list_accounts(self, user_id: str, active_only: bool = True) -> List[SocialAccount]:
        """All accounts connected by a user."""


class InMemoryCredentialStore(CredentialStore):
    """Dict-backed store. Returns copies so callers never share state."""

    def __init__(self, accounts: Optional[List[SocialAccount]] = None):
        self._accounts: Dict[AccountKey, SocialAccount] = {}
        for account in accounts or []:
            self._accounts[account.key] = account.model_copy(deep=True)

    async def load(self, user_id: str, platform: Platform, account_id: str) -> Optional[SocialAccount]:
        account = self._accounts.get((user_id, Platform(platform), account_id))
        return account.model_copy(deep=True) if account else None

    async def save(self, account: SocialAccount) -> None:
        self._accounts[account.key] = account.model_copy(deep=True)

    async def deactivate(
        self, user_id: str, platform: Platform, account_id: str, reason: Optional[str] = None
    ) -> None:
        account = self._accounts.get((user_id, Platform(platform), account_id))
        if account is not None:
            self._accounts[account.key] = account.model_copy(update={"is_active": False, "error_message": reason})

    async def list_accounts(self, user_id: str, active_only: bool = True) -> List[SocialAccount]:
        return [
            account.model_copy(deep=True)
            for key, account in self._accounts.items()
            if key[0] == user_id and (account.is_active or not active_only)
        ]

"""
SQLAlchemy credential store

Stores connected accounts with every secret encrypted at rest (Fernet).
One row per (user_id, platform, account_id).
"""
from datetime import datetime, timezone
from typing import List, Optional

from loguru import logger
from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models import OAuth1Credentials, Platform, SocialAccount
from ..utils.clock import ensure_utc
from ..utils.encryption import TokenCipher
from .credential_store import CredentialStore

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SocialAccountRecord(Base):
    """
    Connected social account with encrypted OAuth tokens.

    OAuth 1.0a columns are only populated for Twitter accounts that can
    upload media.
    """

    __tablename__ = "social_accounts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)

    # Platform information
    platform = Column(String(50), nullable=False, index=True)  # twitter, linkedin, instagram
    account_id = Column(String(255), nullable=False)  # Platform's user ID
    display_name = Column(String(255), nullable=True)

    # OAuth 2.0 tokens (encrypted)
    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=True)  # Some platforms don't use refresh tokens
    expires_at = Column(DateTime(timezone=True), nullable=True)

    # OAuth 1.0a credentials (encrypted)
    encrypted_consumer_key = Column(Text, nullable=True)
    encrypted_consumer_secret = Column(Text, nullable=True)
    encrypted_oauth1_token = Column(Text, nullable=True)
    encrypted_oauth1_token_secret = Column(Text, nullable=True)

    # Connection status
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)  # Last error if connection failed

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (Index("idx_user_platform_account", "user_id", "platform", "account_id", unique=True),)


def create_session_factory(database_url: str, create_tables: bool = True) -> sessionmaker:
    """
    Build a session factory for the credential store.

    SQLite URLs get ``check_same_thread=False``; in-memory SQLite shares one
    connection so every session sees the same database.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
    else:
        engine = create_engine(database_url, pool_pre_ping=True)

    if create_tables:
        Base.metadata.create_all(bind=engine)

    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


class SqlAlchemyCredentialStore(CredentialStore):
    """CredentialStore backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker, cipher: TokenCipher):
        self.session_factory = session_factory
        self.cipher = cipher

    def _find(self, db: Session, user_id: str, platform: Platform, account_id: str) -> Optional[SocialAccountRecord]:
        return (
            db.query(SocialAccountRecord)
            .filter(
                SocialAccountRecord.user_id == user_id,
                SocialAccountRecord.platform == Platform(platform).value,
                SocialAccountRecord.account_id == account_id,
            )
            .first()
        )

    def _to_account(self, record: SocialAccountRecord) -> SocialAccount:
        access_token = self.cipher.decrypt(record.encrypted_access_token)
        is_active = record.is_active
        error_message = record.error_message
        if access_token is None:
            # Key rotated or data corrupted: the user has to reconnect
            logger.error(f"Could not decrypt access token for {record.platform} account {record.account_id}")
            access_token = ""
            is_active = False
            error_message = "Stored access token could not be decrypted"

        oauth1 = None
        if record.encrypted_oauth1_token:
            oauth1 = OAuth1Credentials(
                consumer_key=self.cipher.decrypt(record.encrypted_consumer_key),
                consumer_secret=self.cipher.decrypt(record.encrypted_consumer_secret),
                access_token=self.cipher.decrypt(record.encrypted_oauth1_token),
                access_token_secret=self.cipher.decrypt(record.encrypted_oauth1_token_secret),
            )

        return SocialAccount(
            user_id=record.user_id,
            platform=Platform(record.platform),
            account_id=record.account_id,
            display_name=record.display_name,
            is_active=is_active,
            access_token=access_token,
            refresh_token=self.cipher.decrypt(record.encrypted_refresh_token),
            expires_at=ensure_utc(record.expires_at) if record.expires_at else None,
            oauth1=oauth1,
            error_message=error_message,
            last_used_at=ensure_utc(record.last_used_at) if record.last_used_at else None,
        )

    def _apply(self, record: SocialAccountRecord, account: SocialAccount) -> None:
        oauth1 = account.oauth1 or OAuth1Credentials()
        record.display_name = account.display_name
        record.encrypted_access_token = self.cipher.encrypt(account.access_token)
        record.encrypted_refresh_token = self.cipher.encrypt(account.refresh_token)
        record.expires_at = account.expires_at
        record.encrypted_consumer_key = self.cipher.encrypt(oauth1.consumer_key)
        record.encrypted_consumer_secret = self.cipher.encrypt(oauth1.consumer_secret)
        record.encrypted_oauth1_token = self.cipher.encrypt(oauth1.access_token)
        record.encrypted_oauth1_token_secret = self.cipher.encrypt(oauth1.access_token_secret)
        record.is_active = account.is_active
        record.error_message = account.error_message
        record.last_used_at = account.last_used_at

    async def load(self, user_id: str, platform: Platform, account_id: str) -> Optional[SocialAccount]:
        db = self.session_factory()
        try:
            record = self._find(db, user_id, platform, account_id)
            return self._to_account(record) if record else None
        finally:
            db.close()

    async def save(self, account: SocialAccount) -> None:
        db = self.session_factory()
        try:
            record = self._find(db, account.user_id, account.platform, account.account_id)
            if record is None:
                record = SocialAccountRecord(
                    user_id=account.user_id,
                    platform=account.platform.value,
                    account_id=account.account_id,
                )
                db.add(record)
            self._apply(record, account)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def deactivate(
        self, user_id: str, platform: Platform, account_id: str, reason: Optional[str] = None
    ) -> None:
        db = self.session_factory()
        try:
            record = self._find(db, user_id, platform, account_id)
            if record is None:
                return
            record.is_active = False
            record.error_message = reason
            db.commit()
            logger.info(f"Deactivated {record.platform} account {account_id} for user {user_id}")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def list_accounts(self, user_id: str, active_only: bool = True) -> List[SocialAccount]:
        db = self.session_factory()
        try:
            query = db.query(SocialAccountRecord).filter(SocialAccountRecord.user_id == user_id)
            if active_only:
                query = query.filter(SocialAccountRecord.is_active.is_(True))
            return [self._to_account(record) for record in query.all()]
        finally:
            db.close()

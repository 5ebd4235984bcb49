"""
Data model shared by the token manager, the platform publishers and the
publishing service.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils.clock import ensure_utc


class Platform(str, Enum):
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    INSTAGRAM = "instagram"


class ErrorKind(str, Enum):
    AUTH_EXPIRED = "auth_expired"
    RATE_LIMITED = "rate_limited"
    PAYLOAD_REJECTED = "payload_rejected"
    PROCESSING_FAILED = "processing_failed"
    PROCESSING_TIMEOUT = "processing_timeout"
    PARTIAL_BATCH_FAILURE = "partial_batch_failure"
    PLATFORM_ERROR = "platform_error"


class MediaRole(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    THUMBNAIL = "thumbnail"


class ProcessingState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class OAuth1Credentials(BaseModel):
    """OAuth 1.0a user context, required for Twitter media uploads."""

    consumer_key: Optional[str] = None
    consumer_secret: Optional[str] = None
    access_token: Optional[str] = None
    access_token_secret: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return all([self.consumer_key, self.consumer_secret, self.access_token, self.access_token_secret])


class SocialAccount(BaseModel):
    """
    One connected account on one platform.

    At most one record exists per (user_id, platform, account_id); the
    record holds exactly one current access token.
    """

    user_id: str
    platform: Platform
    account_id: str
    display_name: Optional[str] = None
    is_active: bool = True
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    oauth1: Optional[OAuth1Credentials] = None
    error_message: Optional[str] = None
    last_used_at: Optional[datetime] = None

    @field_validator("expires_at", "last_used_at")
    @classmethod
    def validate_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @property
    def key(self) -> Tuple[str, Platform, str]:
        return (self.user_id, self.platform, self.account_id)

    @property
    def target(self) -> "AccountTarget":
        return AccountTarget(platform=self.platform, account_id=self.account_id)


class TokenSet(BaseModel):
    """Token endpoint response after a refresh."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


class AccountTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    platform: Platform
    account_id: str


class TokenValidationResult(BaseModel):
    is_valid: bool
    access_token: Optional[str] = None
    error: Optional[str] = None
    needs_reconnection: bool = False


class TokenReport(BaseModel):
    """Batch validation outcome. The three lists are disjoint."""

    valid: List[AccountTarget] = Field(default_factory=list)
    invalid: List[AccountTarget] = Field(default_factory=list)
    needs_reconnection: List[AccountTarget] = Field(default_factory=list)


@dataclass(frozen=True)
class MediaAsset:
    """Decoded media bytes. Never persisted."""

    data: bytes = field(repr=False)
    mime_type: str
    role: MediaRole
    source_url: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_video(self) -> bool:
        return self.role == MediaRole.VIDEO


@dataclass(frozen=True)
class UploadHandle:
    """Platform-issued id for uploaded media, consumed by one publish call."""

    platform: Platform
    media_id: str
    role: MediaRole


MediaInput = Union[str, bytes, MediaAsset]


@dataclass
class PublishRequest:
    text: str
    media: List[MediaInput] = field(default_factory=list)


class SkippedMedia(BaseModel):
    index: int
    reason: str


class PublishResult(BaseModel):
    platform: Platform
    account_id: str
    success: bool
    platform_post_id: Optional[str] = None
    platform_url: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    retry_after: Optional[int] = None
    needs_reconnection: bool = False
    degraded: bool = False
    notes: List[str] = Field(default_factory=list)
    skipped_media: List[SkippedMedia] = Field(default_factory=list)
    published_at: Optional[datetime] = None


class PublishSummary(BaseModel):
    attempted: int
    succeeded: int
    failed: int
    results: List[PublishResult] = Field(default_factory=list)

    @property
    def failures(self) -> List[PublishResult]:
        return [r for r in self.results if not r.success]

    @property
    def outcome(self) -> Optional[ErrorKind]:
        """None when every account succeeded, PARTIAL_BATCH_FAILURE when mixed."""
        if self.failed == 0:
            return None
        if self.succeeded > 0:
            return ErrorKind.PARTIAL_BATCH_FAILURE
        kinds = {r.error_kind for r in self.failures}
        return kinds.pop() if len(kinds) == 1 else ErrorKind.PLATFORM_ERROR

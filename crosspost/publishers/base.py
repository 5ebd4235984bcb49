"""
Publisher Base Class - one contract for every platform adapter

Every adapter implements two operations:

- ``upload_media(session, asset) -> UploadHandle``: run the platform's media
  pipeline to completion (including server-side processing) and return a
  handle the next publish call can reference.
- ``publish_post(session, text, handles) -> PublishOutcome``: create the post.

``publish`` chains them for one account and applies the rules shared by all
platforms (video precedence, per-post media cap). Adapters override it when
they can degrade gracefully instead of failing.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import httpx

from ..config.settings import Settings, get_settings
from ..models import MediaAsset, MediaRole, Platform, SkippedMedia, SocialAccount, UploadHandle
from ..utils.clock import Clock


class PlatformLimits:
    """Platform-specific character limits and constraints"""

    TWITTER_MAX_CHARS = 280
    LINKEDIN_MAX_CHARS = 3000
    INSTAGRAM_MAX_CAPTION_CHARS = 2200

    TWITTER_MAX_IMAGES = 4
    LINKEDIN_MAX_IMAGES = 9
    INSTAGRAM_CAROUSEL_MIN = 2
    INSTAGRAM_CAROUSEL_MAX = 10


@dataclass
class PublishSession:
    """Request-scoped state for publishing to one account."""

    account: SocialAccount
    client: httpx.AsyncClient
    clock: Clock = field(default_factory=Clock)
    deadline: Optional[float] = None

    @property
    def access_token(self) -> str:
        return self.account.access_token


@dataclass
class PublishOutcome:
    platform_post_id: str
    platform_url: Optional[str] = None
    degraded: bool = False
    notes: List[str] = field(default_factory=list)
    skipped_media: List[SkippedMedia] = field(default_factory=list)


def truncate_text(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]


class BasePublisher(ABC):
    """Base class for platform adapters."""

    platform: Platform
    max_text_length: int
    max_images: int = 1

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @property
    def name(self) -> str:
        return self.platform.value

    @abstractmethod
    async def upload_media(self, session: PublishSession, asset: MediaAsset) -> UploadHandle:
        """Upload one asset and wait until the platform can reference it."""

    @abstractmethod
    async def publish_post(
        self, session: PublishSession, text: str, handles: Sequence[UploadHandle]
    ) -> PublishOutcome:
        """Create the post referencing previously uploaded media."""

    def select_media(
        self, media: Sequence[MediaAsset]
    ) -> Tuple[List[Tuple[int, MediaAsset]], List[SkippedMedia]]:
        """
        Pick the assets one post can carry.

        A video takes precedence over images in the same request and only one
        video is attached. Images beyond ``max_images`` are dropped.

        Returns:
            (selected (index, asset) pairs, skipped entries)
        """
        selected: List[Tuple[int, MediaAsset]] = []
        skipped: List[SkippedMedia] = []

        videos = [i for i, asset in enumerate(media) if asset.role == MediaRole.VIDEO]
        video_index = videos[0] if videos else None

        for index, asset in enumerate(media):
            if asset.role == MediaRole.THUMBNAIL:
                skipped.append(SkippedMedia(index=index, reason=f"Thumbnails are not published to {self.name}"))
            elif video_index is not None:
                if index == video_index:
                    selected.append((index, asset))
                elif asset.role == MediaRole.VIDEO:
                    skipped.append(SkippedMedia(index=index, reason="Only one video can be attached to a post"))
                else:
                    skipped.append(SkippedMedia(index=index, reason="Video takes precedence over images"))
            elif len(selected) < self.max_images:
                selected.append((index, asset))
            else:
                skipped.append(
                    SkippedMedia(index=index, reason=f"{self.name} allows at most {self.max_images} images per post")
                )

        return selected, skipped

    async def publish(self, session: PublishSession, text: str, media: Sequence[MediaAsset] = ()) -> PublishOutcome:
        """
        Upload media sequentially, then publish.

        Args:
            session: Account-scoped session
            text: Post text (truncated to the platform limit)
            media: Assets already validated for this platform

        Returns:
            PublishOutcome; ``skipped_media`` indexes refer to ``media``
        """
        selected, skipped = self.select_media(media)
        handles = []
        for _, asset in selected:
            handles.append(await self.upload_media(session, asset))

        outcome = await self.publish_post(session, truncate_text(text, self.max_text_length), handles)
        outcome.skipped_media = skipped + outcome.skipped_media
        return outcome

"""
Instagram Publisher - container-based publishing through the Graph API

Instagram does not accept uploaded bytes. Every post is built from media
containers that reference a public URL:

1. Create a media container (image_url, or video_url with media_type=REELS)
2. Videos only: poll the container until status_code is FINISHED
3. Publish the container (``media_publish``)

Carousels create one container per image (``is_carousel_item=true``), then a
CAROUSEL container listing the children.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from loguru import logger

from ..models import MediaAsset, MediaRole, Platform, ProcessingState, SkippedMedia, UploadHandle
from .base import BasePublisher, PlatformLimits, PublishOutcome, PublishSession, truncate_text
from .exceptions import (
    AuthenticationException,
    PayloadRejectedException,
    PublisherException,
    PublishingException,
    RateLimitException,
    classify_response,
    raise_for_platform_error,
)
from .processing import ProcessingPoller, ProcessingStatus

VIDEO_FAILURE_HINT = "Check video format: MP4 (H.264/AAC), max 100MB, max 60s"

CONTAINER_STATES = {
    "IN_PROGRESS": ProcessingState.PROCESSING,
    "FINISHED": ProcessingState.READY,
    "PUBLISHED": ProcessingState.READY,
    "ERROR": ProcessingState.FAILED,
    "EXPIRED": ProcessingState.FAILED,
}


class MediaHost(ABC):
    """Makes media bytes reachable at a public URL for Instagram to fetch."""

    @abstractmethod
    async def host(self, asset: MediaAsset, user_id: str) -> str:
        """Store the asset and return its public https URL."""


class InstagramPublisher(BasePublisher):
    """Publishes images, reels and carousels to Instagram"""

    platform = Platform.INSTAGRAM
    max_text_length = PlatformLimits.INSTAGRAM_MAX_CAPTION_CHARS
    max_images = PlatformLimits.INSTAGRAM_CAROUSEL_MAX

    def __init__(self, settings=None, media_host: Optional[MediaHost] = None):
        super().__init__(settings)
        self.api_base = self.settings.INSTAGRAM_API_BASE.rstrip("/")
        self.media_host = media_host

    async def _public_url(self, session: PublishSession, asset: MediaAsset) -> str:
        if asset.source_url and asset.source_url.lower().startswith(("https://", "http://")):
            return asset.source_url
        if self.media_host is not None:
            return await self.media_host.host(asset, session.account.user_id)
        raise PayloadRejectedException(
            "Instagram needs a public media URL; provide a URL or configure a media host",
            platform=self.name,
        )

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    async def _create_container(self, session: PublishSession, params: Dict[str, str], context: str) -> str:
        response = await session.client.post(
            f"{self.api_base}/me/media",
            data={**params, "access_token": session.access_token},
        )
        raise_for_platform_error(self.name, response, context)
        return response.json()["id"]

    async def _check_container(self, session: PublishSession, container_id: str) -> ProcessingStatus:
        response = await session.client.get(
            f"{self.api_base}/{container_id}",
            params={"fields": "status_code,status", "access_token": session.access_token},
        )
        error = classify_response(self.name, response, "container status")
        if isinstance(error, (AuthenticationException, RateLimitException)):
            raise error
        if error is not None:
            # Status unreadable: stop polling and let publish decide
            logger.warning(f"Could not read Instagram container {container_id} status: {error}")
            return ProcessingStatus(state=ProcessingState.READY, detail="status unavailable")

        result = response.json()
        status_code = result.get("status_code", "IN_PROGRESS")
        state = CONTAINER_STATES.get(status_code, ProcessingState.PROCESSING)
        detail = None
        if state == ProcessingState.FAILED:
            detail = f"{result.get('status') or status_code}. {VIDEO_FAILURE_HINT}"
        return ProcessingStatus(state=state, detail=detail)

    async def upload_media(
        self,
        session: PublishSession,
        asset: MediaAsset,
        caption: Optional[str] = None,
        carousel_item: bool = False,
    ) -> UploadHandle:
        """
        Create a media container and, for video, wait until it is processed.

        Args:
            session: Account session
            asset: Validated media asset
            caption: Caption for single-media posts
            carousel_item: Create the container as a carousel child

        Returns:
            UploadHandle whose media_id is the container id

        Raises:
            AuthenticationException: Token is invalid
            RateLimitException: Rate limit exceeded
            PayloadRejectedException: Media rejected (aspect ratio, no public URL)
            ProcessingFailedException: Video processing failed
            ProcessingTimeoutException: Deadline reached while processing
            PublishingException: Generic error
        """
        try:
            url = await self._public_url(session, asset)
            params: Dict[str, str] = {}
            if asset.role == MediaRole.VIDEO:
                params.update({"video_url": url, "media_type": "REELS"})
            else:
                params["image_url"] = url
            if carousel_item:
                params["is_carousel_item"] = "true"
            elif caption:
                params["caption"] = caption

            container_id = await self._create_container(session, params, f"{asset.role.value} container")
            logger.info(f"Created Instagram {asset.role.value} container: {container_id}")

            if asset.role == MediaRole.VIDEO:
                poller = ProcessingPoller(
                    clock=session.clock,
                    interval=self.settings.INSTAGRAM_POLL_INTERVAL_SECONDS,
                    max_attempts=self.settings.INSTAGRAM_POLL_MAX_ATTEMPTS,
                    deadline=session.deadline,
                    proceed_on_exhaustion=True,
                    platform=self.name,
                )
                await poller.wait_until_ready(
                    lambda: self._check_container(session, container_id), media_id=container_id
                )
        except PublisherException:
            raise
        except Exception as e:
            logger.error(f"Instagram container creation failed: {str(e)}")
            raise PublishingException(f"Failed to create Instagram container: {str(e)}", platform=self.name) from e

        return UploadHandle(platform=self.platform, media_id=container_id, role=asset.role)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def _get_permalink(self, session: PublishSession, media_id: str) -> Optional[str]:
        """Best-effort lookup of the post's public URL."""
        try:
            response = await session.client.get(
                f"{self.api_base}/{media_id}",
                params={"fields": "permalink", "access_token": session.access_token},
            )
            if response.status_code == 200:
                return response.json().get("permalink")
            logger.warning("Failed to get permalink")
        except Exception as e:
            logger.warning(f"Error getting permalink: {str(e)}")
        return None

    async def publish_post(
        self, session: PublishSession, text: str, handles: Sequence[UploadHandle]
    ) -> PublishOutcome:
        """
        Publish a single container or assemble and publish a carousel.

        Single-media containers already carry their caption; ``text`` is
        used as the carousel caption.

        Raises:
            PayloadRejectedException: No media to publish
            AuthenticationException: Token is invalid
            RateLimitException: Rate limit exceeded
            PublishingException: Generic publishing error
        """
        if not handles:
            raise PayloadRejectedException("Instagram posts require at least one image or video", platform=self.name)

        try:
            if len(handles) == 1:
                creation_id = handles[0].media_id
            else:
                creation_id = await self._create_container(
                    session,
                    {
                        "media_type": "CAROUSEL",
                        "children": ",".join(handle.media_id for handle in handles),
                        "caption": truncate_text(text, self.max_text_length),
                    },
                    "carousel container",
                )
                logger.info(f"Created Instagram carousel container {creation_id} with {len(handles)} items")

            response = await session.client.post(
                f"{self.api_base}/me/media_publish",
                data={"creation_id": creation_id, "access_token": session.access_token},
            )
            raise_for_platform_error(self.name, response, "publish")
            media_id = response.json()["id"]
        except PublisherException:
            raise
        except Exception as e:
            logger.error(f"Failed to publish to Instagram: {str(e)}")
            raise PublishingException(f"Failed to publish to Instagram: {str(e)}", platform=self.name) from e

        logger.info(f"Successfully published to Instagram: {media_id}")
        permalink = await self._get_permalink(session, media_id)
        return PublishOutcome(
            platform_post_id=media_id,
            platform_url=permalink or f"https://www.instagram.com/p/{media_id}/",
        )

    async def publish(self, session: PublishSession, text: str, media: Sequence[MediaAsset] = ()) -> PublishOutcome:
        """
        Publish a single image, a reel, or a carousel of 2-10 images.

        Carousel items the platform rejects are skipped. Fewer than two
        surviving items fails the post with every item error listed.
        """
        selected, skipped = self.select_media(media)
        if not selected:
            raise PayloadRejectedException("Instagram posts require at least one image or video", platform=self.name)

        caption = truncate_text(text, self.max_text_length)

        if len(selected) == 1:
            handle = await self.upload_media(session, selected[0][1], caption=caption)
            outcome = await self.publish_post(session, caption, [handle])
        else:
            handles: List[UploadHandle] = []
            failures: List[str] = []
            for index, asset in selected:
                try:
                    handles.append(await self.upload_media(session, asset, carousel_item=True))
                except (AuthenticationException, RateLimitException):
                    raise
                except PublisherException as e:
                    logger.warning(f"Skipping Instagram carousel item {index + 1}: {e}")
                    failures.append(f"Item {index + 1}: {e}")
                    skipped.append(SkippedMedia(index=index, reason=str(e)))

            if len(handles) < PlatformLimits.INSTAGRAM_CAROUSEL_MIN:
                raise PayloadRejectedException(
                    f"Instagram carousel needs at least {PlatformLimits.INSTAGRAM_CAROUSEL_MIN} valid images, "
                    f"{len(handles)} succeeded. " + "; ".join(failures),
                    platform=self.name,
                    failures=failures,
                )

            outcome = await self.publish_post(session, caption, handles)
            outcome.degraded = bool(failures)

        outcome.skipped_media = sorted(skipped + outcome.skipped_media, key=lambda s: s.index)
        return outcome

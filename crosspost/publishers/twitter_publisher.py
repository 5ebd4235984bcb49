"""
Twitter Publisher - media upload over OAuth 1.0a, tweets over OAuth 2.0

Twitter's v1.1 upload endpoint only accepts OAuth 1.0a user context, while
tweets are created through API v2 with the account's OAuth 2.0 bearer token.

Images are uploaded in one multipart request. Videos go through the chunked
pipeline: INIT -> APPEND (5 MB segments) -> FINALIZE -> STATUS polling until
the platform reports ``succeeded``.

Without OAuth 1.0a credentials the post degrades to text-only instead of
failing.
"""
from typing import Dict, List, Optional, Sequence

from loguru import logger

from ..models import MediaAsset, MediaRole, OAuth1Credentials, Platform, ProcessingState, SkippedMedia, UploadHandle
from ..utils.oauth1 import bearer_headers, generate_oauth_header
from .base import BasePublisher, PlatformLimits, PublishOutcome, PublishSession, truncate_text
from .exceptions import MissingCredentialsException, PublisherException, PublishingException, raise_for_platform_error
from .processing import ProcessingPoller, ProcessingStatus

VIDEO_DEGRADED_NOTE = "(Video not attached: uploads need OAuth 1.0a access)"
MEDIA_DEGRADED_REASON = "Media upload requires OAuth 1.0a credentials"

PROCESSING_STATES = {
    "pending": ProcessingState.PENDING,
    "in_progress": ProcessingState.PROCESSING,
    "succeeded": ProcessingState.READY,
    "failed": ProcessingState.FAILED,
}


def append_note(text: str, note: str, limit: int = PlatformLimits.TWITTER_MAX_CHARS) -> str:
    """Append a note to tweet text, truncating the text so the note always fits."""
    if not text:
        return note[:limit]
    room = limit - len(note) - 2
    return f"{text[:max(room, 0)].rstrip()}\n\n{note}"


class TwitterPublisher(BasePublisher):
    """Publishes tweets with optional images or one video"""

    platform = Platform.TWITTER
    max_text_length = PlatformLimits.TWITTER_MAX_CHARS
    max_images = PlatformLimits.TWITTER_MAX_IMAGES

    def __init__(self, settings=None):
        super().__init__(settings)
        self.api_base = self.settings.TWITTER_API_BASE
        self.upload_url = self.settings.TWITTER_UPLOAD_URL
        self.chunk_size = self.settings.TWITTER_CHUNK_SIZE_BYTES

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def oauth1_credentials(self, session: PublishSession) -> Optional[OAuth1Credentials]:
        """
        Resolve OAuth 1.0a credentials for the account.

        Consumer key/secret fall back to the application's TWITTER_API_KEY /
        TWITTER_API_SECRET when the account record does not carry them.

        Returns:
            Complete credentials, or None when media upload is unavailable
        """
        stored = session.account.oauth1
        if stored is None:
            return None
        credentials = OAuth1Credentials(
            consumer_key=stored.consumer_key or self.settings.TWITTER_API_KEY,
            consumer_secret=stored.consumer_secret or self.settings.TWITTER_API_SECRET,
            access_token=stored.access_token,
            access_token_secret=stored.access_token_secret,
        )
        return credentials if credentials.is_complete else None

    def _signed_headers(
        self, credentials: OAuth1Credentials, method: str, params: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
        return {
            "Authorization": generate_oauth_header(
                method=method,
                url=self.upload_url,
                consumer_key=credentials.consumer_key,
                consumer_secret=credentials.consumer_secret,
                token=credentials.access_token,
                token_secret=credentials.access_token_secret,
                params=params,
            )
        }

    # ------------------------------------------------------------------
    # Media upload
    # ------------------------------------------------------------------

    async def upload_media(self, session: PublishSession, asset: MediaAsset) -> UploadHandle:
        """
        Upload an image or video to Twitter.

        Args:
            session: Account session carrying OAuth 1.0a credentials
            asset: Validated media asset

        Returns:
            UploadHandle with the media_id_string

        Raises:
            MissingCredentialsException: Account has no OAuth 1.0a credentials
            AuthenticationException: Credentials rejected
            RateLimitException: Rate limit exceeded
            ProcessingFailedException: Video processing failed
            ProcessingTimeoutException: Video processing did not finish in time
            PublishingException: Generic upload error
        """
        credentials = self.oauth1_credentials(session)
        if credentials is None:
            raise MissingCredentialsException(
                "Twitter media upload requires OAuth 1.0a credentials", platform=self.name
            )

        try:
            if asset.role == MediaRole.VIDEO:
                media_id = await self._upload_video(session, credentials, asset)
            else:
                media_id = await self._upload_image(session, credentials, asset)
        except PublisherException:
            raise
        except Exception as e:
            logger.error(f"Twitter media upload failed: {str(e)}")
            raise PublishingException(f"Failed to upload media to Twitter: {str(e)}", platform=self.name) from e

        return UploadHandle(platform=self.platform, media_id=media_id, role=asset.role)

    async def _upload_image(self, session: PublishSession, credentials: OAuth1Credentials, asset: MediaAsset) -> str:
        extension = asset.mime_type.split("/")[-1]
        response = await session.client.post(
            self.upload_url,
            headers=self._signed_headers(credentials, "POST"),
            data={"media_category": "tweet_image"},
            files={"media": (f"image.{extension}", asset.data, asset.mime_type)},
        )
        raise_for_platform_error(self.name, response, "image upload")
        media_id = response.json()["media_id_string"]
        logger.info(f"Uploaded image to Twitter: {media_id}")
        return media_id

    async def _upload_video(self, session: PublishSession, credentials: OAuth1Credentials, asset: MediaAsset) -> str:
        # INIT
        init_params = {
            "command": "INIT",
            "media_type": asset.mime_type,
            "total_bytes": str(asset.size),
            "media_category": "tweet_video",
        }
        response = await session.client.post(
            self.upload_url,
            headers=self._signed_headers(credentials, "POST", init_params),
            data=init_params,
        )
        raise_for_platform_error(self.name, response, "INIT")
        media_id = response.json()["media_id_string"]
        logger.info(f"Twitter video upload initialized: {media_id} ({asset.size} bytes)")

        # APPEND
        for segment_index, offset in enumerate(range(0, asset.size, self.chunk_size)):
            chunk = asset.data[offset:offset + self.chunk_size]
            response = await session.client.post(
                self.upload_url,
                headers=self._signed_headers(credentials, "POST"),
                data={"command": "APPEND", "media_id": media_id, "segment_index": str(segment_index)},
                files={"media": ("chunk", chunk, "application/octet-stream")},
                timeout=self.settings.UPLOAD_TIMEOUT_SECONDS,
            )
            raise_for_platform_error(self.name, response, f"APPEND segment {segment_index}")
            logger.debug(f"Appended segment {segment_index} ({len(chunk)} bytes) to {media_id}")

        # FINALIZE
        finalize_params = {"command": "FINALIZE", "media_id": media_id}
        response = await session.client.post(
            self.upload_url,
            headers=self._signed_headers(credentials, "POST", finalize_params),
            data=finalize_params,
        )
        raise_for_platform_error(self.name, response, "FINALIZE")
        processing_info = response.json().get("processing_info")

        if processing_info:
            poller = ProcessingPoller(
                clock=session.clock,
                interval=self.settings.TWITTER_STATUS_DEFAULT_WAIT_SECONDS,
                max_attempts=self.settings.TWITTER_STATUS_MAX_ATTEMPTS,
                deadline=session.deadline,
                min_interval=1.0,
                platform=self.name,
            )
            await poller.wait_until_ready(
                lambda: self._check_status(session, credentials, media_id),
                media_id=media_id,
                initial=self._parse_processing_info(processing_info),
            )

        logger.info(f"Twitter video ready: {media_id}")
        return media_id

    @staticmethod
    def _parse_processing_info(processing_info: Optional[dict]) -> ProcessingStatus:
        # No processing_info means the media is ready
        if not processing_info:
            return ProcessingStatus(state=ProcessingState.READY)
        error = processing_info.get("error") or {}
        return ProcessingStatus(
            state=PROCESSING_STATES.get(processing_info.get("state"), ProcessingState.PROCESSING),
            check_after=processing_info.get("check_after_secs"),
            detail=error.get("message") or error.get("name"),
        )

    async def _check_status(
        self, session: PublishSession, credentials: OAuth1Credentials, media_id: str
    ) -> ProcessingStatus:
        query = {"command": "STATUS", "media_id": media_id}
        response = await session.client.get(
            self.upload_url,
            params=query,
            headers=self._signed_headers(credentials, "GET", query),
        )
        raise_for_platform_error(self.name, response, "STATUS")
        return self._parse_processing_info(response.json().get("processing_info"))

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish_post(
        self, session: PublishSession, text: str, handles: Sequence[UploadHandle]
    ) -> PublishOutcome:
        """
        Create a tweet with the OAuth 2.0 bearer token.

        Args:
            session: Account session
            text: Tweet text (truncated to 280 characters)
            handles: Uploaded media (at most 4)

        Returns:
            PublishOutcome with the tweet id and URL

        Raises:
            AuthenticationException: Token is invalid
            RateLimitException: Rate limit exceeded
            PayloadRejectedException: Tweet rejected
            PublishingException: Generic publishing error
        """
        payload: Dict[str, object] = {"text": truncate_text(text, self.max_text_length)}
        media_ids = [handle.media_id for handle in handles][: self.max_images]
        if media_ids:
            payload["media"] = {"media_ids": media_ids}

        try:
            response = await session.client.post(
                f"{self.api_base}/tweets",
                headers=bearer_headers(session.access_token),
                json=payload,
            )
            raise_for_platform_error(self.name, response, "tweet")
            tweet_id = response.json()["data"]["id"]
        except PublisherException:
            raise
        except Exception as e:
            logger.error(f"Failed to publish to Twitter: {str(e)}")
            raise PublishingException(f"Failed to publish to Twitter: {str(e)}", platform=self.name) from e

        logger.info(f"Successfully published to Twitter: {tweet_id}")
        return PublishOutcome(
            platform_post_id=tweet_id,
            platform_url=f"https://twitter.com/i/status/{tweet_id}",
        )

    async def publish(self, session: PublishSession, text: str, media: Sequence[MediaAsset] = ()) -> PublishOutcome:
        """
        Publish a tweet, degrading to text-only when media cannot be uploaded.

        Without OAuth 1.0a credentials a video is replaced by a short note in
        the tweet text and images are dropped; the outcome is marked degraded.
        Any other upload failure propagates.
        """
        selected, skipped = self.select_media(media)
        notes: List[str] = []
        degraded = False

        if selected and self.oauth1_credentials(session) is None:
            degraded = True
            has_video = any(asset.role == MediaRole.VIDEO for _, asset in selected)
            if has_video:
                text = append_note(text, VIDEO_DEGRADED_NOTE, self.max_text_length)
                notes.append("Video was not attached because the account has no OAuth 1.0a credentials")
            else:
                notes.append("Images were not attached because the account has no OAuth 1.0a credentials")
            logger.warning(
                f"Twitter account {session.account.account_id} has no OAuth 1.0a credentials, publishing text only"
            )
            skipped.extend(SkippedMedia(index=index, reason=MEDIA_DEGRADED_REASON) for index, _ in selected)
            selected = []

        handles = []
        for _, asset in selected:
            handles.append(await self.upload_media(session, asset))

        outcome = await self.publish_post(session, text, handles)
        outcome.degraded = degraded
        outcome.notes = notes + outcome.notes
        outcome.skipped_media = sorted(skipped + outcome.skipped_media, key=lambda s: s.index)
        return outcome

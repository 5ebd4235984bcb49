"""
LinkedIn Publisher - Publish content to LinkedIn using OAuth

Media goes through LinkedIn's two-step asset pipeline:
1. Register the upload (``/assets?action=registerUpload``) to obtain an
   asset URN and a one-time upload URL
2. POST the raw bytes to the upload URL

The asset URNs are then referenced from a UGC post.
"""
from typing import Any, Dict, List, Sequence

import httpx
from loguru import logger

from ..models import MediaAsset, MediaRole, Platform, SkippedMedia, UploadHandle
from ..utils.oauth1 import bearer_headers
from .base import BasePublisher, PlatformLimits, PublishOutcome, PublishSession, truncate_text
from .exceptions import (
    AuthenticationException,
    PublisherException,
    PublishingException,
    RateLimitException,
    raise_for_platform_error,
)

UPLOAD_MECHANISM = "com.linkedin.digitalmedia.uploading.MediaUploadHttpRequest"
SHARE_CONTENT = "com.linkedin.ugc.ShareContent"
RECIPES = {
    MediaRole.IMAGE: "urn:li:digitalmediaRecipe:feedshare-image",
    MediaRole.VIDEO: "urn:li:digitalmediaRecipe:feedshare-video",
}


def author_urn(account_id: str) -> str:
    return account_id if account_id.startswith("urn:li:") else f"urn:li:person:{account_id}"


class LinkedInPublisher(BasePublisher):
    """Publishes content to LinkedIn using OAuth"""

    platform = Platform.LINKEDIN
    max_text_length = PlatformLimits.LINKEDIN_MAX_CHARS
    max_images = PlatformLimits.LINKEDIN_MAX_IMAGES

    def __init__(self, settings=None):
        super().__init__(settings)
        self.api_base = self.settings.LINKEDIN_API_BASE

    def _headers(self, session: PublishSession, restli: bool = True) -> Dict[str, str]:
        headers = bearer_headers(session.access_token)
        if restli:
            headers["X-Restli-Protocol-Version"] = "2.0.0"
        return headers

    # ------------------------------------------------------------------
    # Media upload
    # ------------------------------------------------------------------

    async def upload_media(self, session: PublishSession, asset: MediaAsset) -> UploadHandle:
        """
        Register and upload one image or video.

        Returns:
            UploadHandle whose media_id is the asset URN

        Raises:
            AuthenticationException: Token is invalid
            RateLimitException: Rate limit exceeded
            PayloadRejectedException: Upload rejected
            PublishingException: Generic upload error
        """
        role = MediaRole.VIDEO if asset.role == MediaRole.VIDEO else MediaRole.IMAGE
        register_body = {
            "registerUploadRequest": {
                "recipes": [RECIPES[role]],
                "owner": author_urn(session.account.account_id),
                "serviceRelationships": [
                    {"relationshipType": "OWNER", "identifier": "urn:li:userGeneratedContent"}
                ],
            }
        }

        try:
            response = await session.client.post(
                f"{self.api_base}/assets",
                params={"action": "registerUpload"},
                headers=self._headers(session),
                json=register_body,
            )
            raise_for_platform_error(self.name, response, "register upload")
            value = response.json()["value"]
            upload_url = value["uploadMechanism"][UPLOAD_MECHANISM]["uploadUrl"]
            asset_urn = value["asset"]
            logger.debug(f"Registered LinkedIn {role.value} upload: {asset_urn}")

            response = await session.client.post(
                upload_url,
                headers={"Authorization": f"Bearer {session.access_token}", "Content-Type": asset.mime_type},
                content=asset.data,
                timeout=self.settings.UPLOAD_TIMEOUT_SECONDS,
            )
            raise_for_platform_error(self.name, response, f"{role.value} upload")
        except PublisherException:
            raise
        except Exception as e:
            logger.error(f"LinkedIn media upload failed: {str(e)}")
            raise PublishingException(f"Failed to upload media to LinkedIn: {str(e)}", platform=self.name) from e

        logger.info(f"Uploaded {role.value} to LinkedIn: {asset_urn}")
        return UploadHandle(platform=self.platform, media_id=asset_urn, role=role)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _post_body(self, session: PublishSession, text: str, handles: Sequence[UploadHandle]) -> Dict[str, Any]:
        if any(handle.role == MediaRole.VIDEO for handle in handles):
            category = "VIDEO"
        elif handles:
            category = "IMAGE"
        else:
            category = "NONE"

        share_content: Dict[str, Any] = {
            "shareCommentary": {"text": text},
            "shareMediaCategory": category,
        }
        if handles:
            share_content["media"] = [{"status": "READY", "media": handle.media_id} for handle in handles]

        return {
            "author": author_urn(session.account.account_id),
            "lifecycleState": "PUBLISHED",
            "specificContent": {SHARE_CONTENT: share_content},
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }

    async def _create_post(self, session: PublishSession, body: Dict[str, Any], restli: bool) -> httpx.Response:
        response = await session.client.post(
            f"{self.api_base}/ugcPosts",
            headers=self._headers(session, restli=restli),
            json=body,
        )
        raise_for_platform_error(self.name, response, "post")
        return response

    def _post_id(self, response: httpx.Response) -> str:
        """Read the post id from an accepted response, header first."""
        post_id = response.headers.get("x-restli-id")
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict) and data.get("id"):
                post_id = data["id"]
        if not post_id:
            raise PublishingException("LinkedIn accepted the post but returned no post id", platform=self.name)
        return post_id

    async def publish_post(
        self, session: PublishSession, text: str, handles: Sequence[UploadHandle]
    ) -> PublishOutcome:
        """
        Create a UGC post.

        When LinkedIn rejects the full request for a reason other than auth or
        rate limiting, one text-only request without the Rest.li protocol
        header is tried before giving up. An accepted request is never sent
        again, even if its response cannot be read.

        Raises:
            AuthenticationException: Token is invalid
            RateLimitException: Rate limit exceeded
            PublisherException: Both the full and the fallback request failed
        """
        text = truncate_text(text, self.max_text_length)
        degraded = False
        notes: List[str] = []

        try:
            response = await self._create_post(session, self._post_body(session, text, handles), restli=True)
        except (AuthenticationException, RateLimitException):
            raise
        except PublisherException as primary_error:
            logger.warning(f"LinkedIn post failed, retrying with simplified request: {primary_error}")
            try:
                response = await self._create_post(session, self._post_body(session, text, []), restli=False)
            except Exception as fallback_error:
                logger.error(f"LinkedIn fallback post failed: {fallback_error}")
                raise primary_error
            notes.append("Published with the simplified LinkedIn request")
            if handles:
                degraded = True
                notes.append("Media was dropped by the simplified request")
        except httpx.HTTPError as e:
            raise PublishingException(f"Failed to publish to LinkedIn: {e}", platform=self.name) from e

        post_id = self._post_id(response)
        logger.info(f"Successfully published to LinkedIn: {post_id}")
        return PublishOutcome(
            platform_post_id=post_id,
            platform_url=f"https://www.linkedin.com/feed/update/{post_id}/",
            degraded=degraded,
            notes=notes,
        )

    async def publish(self, session: PublishSession, text: str, media: Sequence[MediaAsset] = ()) -> PublishOutcome:
        """
        Upload media and publish.

        Images upload independently; a failed image is skipped. Video
        failures, auth failures and rate limits abort the post.
        """
        selected, skipped = self.select_media(media)
        handles = []
        failed_uploads = 0

        for index, asset in selected:
            if asset.role == MediaRole.VIDEO:
                handles.append(await self.upload_media(session, asset))
                continue
            try:
                handles.append(await self.upload_media(session, asset))
            except (AuthenticationException, RateLimitException):
                raise
            except PublisherException as e:
                logger.warning(f"Skipping LinkedIn image {index}: {e}")
                skipped.append(SkippedMedia(index=index, reason=str(e)))
                failed_uploads += 1

        outcome = await self.publish_post(session, text, handles)
        if failed_uploads:
            outcome.degraded = True
        outcome.skipped_media = sorted(skipped + outcome.skipped_media, key=lambda s: s.index)
        return outcome

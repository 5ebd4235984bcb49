"""
Publishing Service

Unified service for publishing one post to many social media accounts.

For every target account:
1. Resolve a valid access token (refreshing it when expired)
2. Validate the request's media against the platform's limits
3. Hand text + media to the platform publisher
4. Record a PublishResult

Accounts are published concurrently, bounded by MAX_CONCURRENT_PUBLISHES.
A failure in one account never aborts the others; the batch always returns a
PublishSummary.
"""
import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

import httpx
from loguru import logger

from ..config.settings import Settings
from ..models import (
    AccountTarget,
    ErrorKind,
    MediaAsset,
    Platform,
    PublishRequest,
    PublishResult,
    PublishSummary,
    SkippedMedia,
    TokenReport,
)
from ..publishers.base import BasePublisher, PublishSession
from ..publishers.exceptions import PayloadRejectedException, PublisherException, PublishingException
from ..publishers.instagram_publisher import InstagramPublisher, MediaHost
from ..publishers.linkedin_publisher import LinkedInPublisher
from ..publishers.twitter_publisher import TwitterPublisher
from ..utils.clock import Clock
from ..utils.media import normalize_media, validate_for_platform
from .token_manager import TokenLifecycleManager

# (request index, decoded asset or None, decode error or None)
PreparedMedia = Tuple[int, Optional[MediaAsset], Optional[str]]


class PublishingService:
    """
    Publish a post to several accounts at once.

    Args:
        token_manager: Token lifecycle manager over the credential store
        publishers: Platform publishers; defaults to Twitter, LinkedIn and
            Instagram
        settings: Engine settings (defaults to the token manager's)
        clock: Time source for deadlines (defaults to the token manager's)
        client: Shared HTTP client; one is created per batch when omitted
        media_host: Public URL host for Instagram byte-only media
    """

    def __init__(
        self,
        token_manager: TokenLifecycleManager,
        publishers: Optional[Dict[Platform, BasePublisher]] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        client: Optional[httpx.AsyncClient] = None,
        media_host: Optional[MediaHost] = None,
    ):
        self.token_manager = token_manager
        self.settings = settings or token_manager.settings
        self.clock = clock or token_manager.clock
        self.client = client
        self.publishers: Dict[Platform, BasePublisher] = publishers or {
            Platform.TWITTER: TwitterPublisher(self.settings),
            Platform.LINKEDIN: LinkedInPublisher(self.settings),
            Platform.INSTAGRAM: InstagramPublisher(self.settings, media_host=media_host),
        }

    async def preflight(self, user_id: str) -> TokenReport:
        """Validate every connected account so callers can warn before a bulk publish."""
        return await self.token_manager.validate_all_user_tokens(user_id)

    async def publish(
        self,
        user_id: str,
        targets: Sequence[AccountTarget],
        request: PublishRequest,
        timeout: Optional[float] = None,
    ) -> PublishSummary:
        """
        Publish one post to every target account.

        Args:
            user_id: Owner of the accounts
            targets: Accounts to publish to
            request: Post text and media inputs
            timeout: Per-account deadline in seconds, measured from the start
                of the batch (defaults to PUBLISH_TIMEOUT_SECONDS)

        Returns:
            PublishSummary with one result per target, in target order
        """
        if timeout is None:
            timeout = self.settings.PUBLISH_TIMEOUT_SECONDS

        if self.client is not None:
            return await self._publish_batch(self.client, user_id, targets, request, timeout)

        async with httpx.AsyncClient(timeout=self.settings.HTTP_TIMEOUT_SECONDS) as client:
            return await self._publish_batch(client, user_id, targets, request, timeout)

    async def _prepare_media(self, client: httpx.AsyncClient, request: PublishRequest) -> List[PreparedMedia]:
        prepared: List[PreparedMedia] = []
        for index, value in enumerate(request.media):
            try:
                prepared.append((index, await normalize_media(value, client=client), None))
            except PayloadRejectedException as e:
                logger.warning(f"Media item {index} could not be decoded: {e}")
                prepared.append((index, None, str(e)))
        return prepared

    async def _publish_batch(
        self,
        client: httpx.AsyncClient,
        user_id: str,
        targets: Sequence[AccountTarget],
        request: PublishRequest,
        timeout: Optional[float],
    ) -> PublishSummary:
        prepared = await self._prepare_media(client, request)
        deadline = self.clock.monotonic() + timeout if timeout is not None else None
        semaphore = asyncio.Semaphore(self.settings.MAX_CONCURRENT_PUBLISHES)

        async def publish_with_limit(target: AccountTarget) -> PublishResult:
            async with semaphore:
                return await self.publish_to_account(client, user_id, target, request.text, prepared, deadline)

        logger.info(f"Publishing to {len(targets)} accounts for user {user_id}")
        results = await asyncio.gather(*(publish_with_limit(target) for target in targets))

        succeeded = sum(1 for result in results if result.success)
        summary = PublishSummary(
            attempted=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=list(results),
        )

        if summary.outcome == ErrorKind.PARTIAL_BATCH_FAILURE:
            logger.warning(f"Partial batch failure: {summary.succeeded}/{summary.attempted} accounts published")
        else:
            logger.info(f"Batch complete: {summary.succeeded}/{summary.attempted} accounts published")
        return summary

    def _usable_media(
        self, platform: Platform, prepared: List[PreparedMedia]
    ) -> Tuple[List[MediaAsset], List[int], List[SkippedMedia]]:
        usable: List[MediaAsset] = []
        indices: List[int] = []
        skipped: List[SkippedMedia] = []

        for index, asset, error in prepared:
            if asset is None:
                skipped.append(SkippedMedia(index=index, reason=error or "Media could not be decoded"))
                continue
            problem = validate_for_platform(asset, platform)
            if problem:
                skipped.append(SkippedMedia(index=index, reason=problem))
                continue
            usable.append(asset)
            indices.append(index)

        if prepared and not usable:
            reasons = [item.reason for item in skipped]
            raise PayloadRejectedException(
                f"No media item is usable on {platform.value}: " + "; ".join(reasons),
                platform=platform.value,
                failures=reasons,
            )
        return usable, indices, skipped

    async def publish_to_account(
        self,
        client: httpx.AsyncClient,
        user_id: str,
        target: AccountTarget,
        text: str,
        prepared: List[PreparedMedia],
        deadline: Optional[float] = None,
    ) -> PublishResult:
        """
        Publish to a single account. Never raises for platform failures.

        Returns:
            PublishResult describing success or the classified failure
        """
        platform = Platform(target.platform)
        skipped: List[SkippedMedia] = []

        try:
            publisher = self.publishers.get(platform)
            if publisher is None:
                raise PublishingException(f"No publisher configured for {platform.value}", platform=platform.value)

            account = await self.token_manager.get_valid_account(user_id, platform, target.account_id)
            usable, indices, skipped = self._usable_media(platform, prepared)
            session = PublishSession(account=account, client=client, clock=self.clock, deadline=deadline)

            if deadline is None:
                outcome = await publisher.publish(session, text, usable)
            else:
                remaining = deadline - self.clock.monotonic()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                outcome = await asyncio.wait_for(publisher.publish(session, text, usable), remaining)

        except asyncio.TimeoutError:
            logger.error(f"Publishing to {platform.value} account {target.account_id} timed out")
            return PublishResult(
                platform=platform,
                account_id=target.account_id,
                success=False,
                error_kind=ErrorKind.PROCESSING_TIMEOUT,
                error_message=f"Publishing to {platform.value} did not finish before the deadline",
                skipped_media=skipped,
            )
        except PublisherException as e:
            logger.error(f"Publishing to {platform.value} account {target.account_id} failed: {e}")
            return PublishResult(
                platform=platform,
                account_id=target.account_id,
                success=False,
                error_kind=e.kind,
                error_message=str(e),
                retry_after=getattr(e, "retry_after", None),
                needs_reconnection=getattr(e, "needs_reconnection", False),
                skipped_media=skipped,
            )
        except Exception as e:
            logger.exception(f"Unexpected error publishing to {platform.value} account {target.account_id}")
            return PublishResult(
                platform=platform,
                account_id=target.account_id,
                success=False,
                error_kind=ErrorKind.PLATFORM_ERROR,
                error_message=str(e),
                skipped_media=skipped,
            )

        # Adapter indexes refer to the usable list; map them back to the request
        skipped.extend(SkippedMedia(index=indices[s.index], reason=s.reason) for s in outcome.skipped_media)

        logger.info(f"Published to {platform.value} account {target.account_id}: {outcome.platform_post_id}")
        try:
            await self.token_manager.mark_used(account)
        except Exception as e:
            # The post is already live
            logger.warning(f"Could not record last use of {platform.value} account {target.account_id}: {e}")

        return PublishResult(
            platform=platform,
            account_id=target.account_id,
            success=True,
            platform_post_id=outcome.platform_post_id,
            platform_url=outcome.platform_url,
            degraded=outcome.degraded or bool(skipped),
            notes=outcome.notes,
            skipped_media=sorted(skipped, key=lambda s: s.index),
            published_at=self.clock.now(),
        )

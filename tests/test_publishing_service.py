"""Tests for the publishing orchestrator"""
import asyncio
import base64
import json

import httpx
import pytest

from conftest import (
    LINKEDIN_API,
    TWITTER_TWEETS_URL,
    TWITTER_UPLOAD_URL,
    jpeg_bytes,
    make_account,
    twitter_oauth1,
)
from crosspost.models import AccountTarget, ErrorKind, Platform, PublishRequest, UploadHandle
from crosspost.publishers.base import BasePublisher, PublishOutcome
from crosspost.publishers.linkedin_publisher import UPLOAD_MECHANISM
from crosspost.services.publishing_service import PublishingService
from crosspost.services.token_manager import TokenLifecycleManager
from crosspost.storage.credential_store import InMemoryCredentialStore
from crosspost.utils.media import MB


class RecordingPublisher(BasePublisher):
    """Publisher double that records what it was asked to publish."""

    max_text_length = 280
    max_images = 4

    def __init__(self, settings, platform=Platform.TWITTER, on_publish=None):
        super().__init__(settings)
        self.platform = platform
        self.on_publish = on_publish
        self.published = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def upload_media(self, session, asset):
        return UploadHandle(platform=self.platform, media_id=f"media-{asset.size}", role=asset.role)

    async def publish_post(self, session, text, handles):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_publish is not None:
                await self.on_publish(session)
            for _ in range(3):
                await asyncio.sleep(0)
        finally:
            self.in_flight -= 1
        self.published.append((session.account.account_id, text, list(handles)))
        return PublishOutcome(platform_post_id=f"post-{session.account.account_id}")


def targets_for(platform, *account_ids):
    return [AccountTarget(platform=platform, account_id=account_id) for account_id in account_ids]


def service_with(accounts, settings, clock, publishers=None, client=None):
    manager = TokenLifecycleManager(InMemoryCredentialStore(accounts), settings=settings, clock=clock)
    return PublishingService(manager, publishers=publishers, client=client)


def data_uri(data, mime_type):
    return f"data:{mime_type};base64," + base64.b64encode(data).decode()


class TestBatchIsolation:
    @pytest.mark.asyncio
    async def test_one_expired_account_does_not_block_the_others(self, settings, clock, http_client):
        accounts = [make_account(Platform.TWITTER, account_id=f"acct-{n}") for n in range(1, 6)]
        accounts[2] = make_account(Platform.TWITTER, account_id="acct-3", expires_in=-60, refresh_token=None)
        publisher = RecordingPublisher(settings)
        service = service_with(accounts, settings, clock, {Platform.TWITTER: publisher}, client=http_client)

        summary = await service.publish(
            "user-1", targets_for(Platform.TWITTER, *[f"acct-{n}" for n in range(1, 6)]), PublishRequest(text="Hi")
        )

        assert summary.attempted == 5
        assert summary.succeeded == 4
        assert summary.failed == 1
        assert summary.outcome == ErrorKind.PARTIAL_BATCH_FAILURE
        assert [r.account_id for r in summary.results] == [f"acct-{n}" for n in range(1, 6)]

        failed = summary.results[2]
        assert failed.success is False
        assert failed.error_kind == ErrorKind.AUTH_EXPIRED
        assert failed.needs_reconnection is True
        assert {account_id for account_id, _, _ in publisher.published} == {"acct-1", "acct-2", "acct-4", "acct-5"}

        stored = await service.token_manager.store.load("user-1", Platform.TWITTER, "acct-3")
        assert stored.is_active is False

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, settings, clock, http_client):
        async def explode(session):
            if session.account.account_id == "acct-2":
                raise RuntimeError("boom")

        publisher = RecordingPublisher(settings, on_publish=explode)
        accounts = [make_account(Platform.TWITTER, account_id="acct-1"), make_account(Platform.TWITTER, account_id="acct-2")]
        service = service_with(accounts, settings, clock, {Platform.TWITTER: publisher}, client=http_client)

        summary = await service.publish("user-1", targets_for(Platform.TWITTER, "acct-1", "acct-2"), PublishRequest(text="Hi"))

        assert summary.results[0].success is True
        assert summary.results[1].error_kind == ErrorKind.PLATFORM_ERROR
        assert "boom" in summary.results[1].error_message

    @pytest.mark.asyncio
    async def test_platform_without_publisher(self, settings, clock, http_client):
        service = service_with(
            [make_account(Platform.LINKEDIN)], settings, clock, {Platform.TWITTER: RecordingPublisher(settings)},
            client=http_client,
        )

        summary = await service.publish("user-1", targets_for(Platform.LINKEDIN, "acct-1"), PublishRequest(text="Hi"))

        assert summary.results[0].error_kind == ErrorKind.PLATFORM_ERROR
        assert summary.outcome == ErrorKind.PLATFORM_ERROR

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, settings, clock, http_client):
        limited = settings.model_copy(update={"MAX_CONCURRENT_PUBLISHES": 2})
        publisher = RecordingPublisher(limited)
        account_ids = [f"acct-{n}" for n in range(6)]
        manager = TokenLifecycleManager(
            InMemoryCredentialStore([make_account(Platform.TWITTER, account_id=a) for a in account_ids]),
            settings=limited,
            clock=clock,
        )
        service = PublishingService(manager, publishers={Platform.TWITTER: publisher}, client=http_client)

        summary = await service.publish("user-1", targets_for(Platform.TWITTER, *account_ids), PublishRequest(text="Hi"))

        assert summary.succeeded == 6
        assert publisher.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_deadline_marks_processing_timeout(self, settings, clock, http_client):
        async def stall(session):
            await asyncio.sleep(5)

        publisher = RecordingPublisher(settings, on_publish=stall)
        service = service_with([make_account(Platform.TWITTER)], settings, clock, {Platform.TWITTER: publisher}, client=http_client)

        summary = await service.publish(
            "user-1", targets_for(Platform.TWITTER, "acct-1"), PublishRequest(text="Hi"), timeout=0.05
        )

        assert summary.results[0].error_kind == ErrorKind.PROCESSING_TIMEOUT
        assert summary.outcome == ErrorKind.PROCESSING_TIMEOUT

    @pytest.mark.asyncio
    async def test_zero_timeout_expires_before_publishing(self, settings, clock, http_client):
        publisher = RecordingPublisher(settings)
        service = service_with([make_account(Platform.TWITTER)], settings, clock, {Platform.TWITTER: publisher}, client=http_client)

        summary = await service.publish(
            "user-1", targets_for(Platform.TWITTER, "acct-1"), PublishRequest(text="Hi"), timeout=0
        )

        assert summary.results[0].error_kind == ErrorKind.PROCESSING_TIMEOUT
        assert publisher.max_in_flight == 0
        assert publisher.published == []

    @pytest.mark.asyncio
    async def test_success_records_last_use(self, settings, clock, http_client):
        accounts = [
            make_account(Platform.TWITTER, account_id="acct-1"),
            make_account(Platform.TWITTER, account_id="acct-2", expires_in=-60, refresh_token=None),
        ]
        service = service_with(accounts, settings, clock, {Platform.TWITTER: RecordingPublisher(settings)}, client=http_client)

        await service.publish("user-1", targets_for(Platform.TWITTER, "acct-1", "acct-2"), PublishRequest(text="Hi"))

        store = service.token_manager.store
        assert (await store.load("user-1", Platform.TWITTER, "acct-1")).last_used_at == clock.now()
        assert (await store.load("user-1", Platform.TWITTER, "acct-2")).last_used_at is None


class TestMediaHandling:
    @pytest.mark.asyncio
    async def test_undecodable_item_is_skipped_with_request_index(self, settings, clock, http_client):
        publisher = RecordingPublisher(settings)
        service = service_with([make_account(Platform.TWITTER)], settings, clock, {Platform.TWITTER: publisher}, client=http_client)
        request = PublishRequest(text="Hi", media=["%%% not base64 %%%", data_uri(jpeg_bytes(1000), "image/jpeg")])

        summary = await service.publish("user-1", targets_for(Platform.TWITTER, "acct-1"), request)

        result = summary.results[0]
        assert result.success is True
        assert result.degraded is True
        assert [s.index for s in result.skipped_media] == [0]
        _, _, handles = publisher.published[0]
        assert [h.media_id for h in handles] == ["media-1000"]

    @pytest.mark.asyncio
    async def test_skipped_indices_refer_to_the_request(self, settings, clock, http_client):
        publisher = RecordingPublisher(settings)
        service = service_with([make_account(Platform.TWITTER)], settings, clock, {Platform.TWITTER: publisher}, client=http_client)
        oversized = data_uri(jpeg_bytes(6 * MB), "image/jpeg")
        images = [data_uri(jpeg_bytes(100 + n), "image/jpeg") for n in range(5)]
        request = PublishRequest(text="Hi", media=[oversized] + images)

        summary = await service.publish("user-1", targets_for(Platform.TWITTER, "acct-1"), request)

        skipped = summary.results[0].skipped_media
        assert [s.index for s in skipped] == [0, 5]
        assert "exceeds Twitter's limit" in skipped[0].reason

    @pytest.mark.asyncio
    async def test_media_invalid_on_one_platform_only(self, settings, clock, http_client):
        gif = data_uri(b"GIF89a" + b"\x00" * 100, "image/gif")
        twitter = RecordingPublisher(settings)
        instagram = RecordingPublisher(settings, platform=Platform.INSTAGRAM)
        service = service_with(
            [make_account(Platform.TWITTER), make_account(Platform.INSTAGRAM)],
            settings, clock,
            {Platform.TWITTER: twitter, Platform.INSTAGRAM: instagram},
            client=http_client,
        )
        targets = targets_for(Platform.TWITTER, "acct-1") + targets_for(Platform.INSTAGRAM, "acct-1")

        summary = await service.publish("user-1", targets, PublishRequest(text="Animated", media=[gif]))

        twitter_result, instagram_result = summary.results
        assert twitter_result.success is True
        assert instagram_result.success is False
        assert instagram_result.error_kind == ErrorKind.PAYLOAD_REJECTED
        assert "Instagram does not support image/gif" in instagram_result.error_message
        assert instagram.published == []
        assert summary.outcome == ErrorKind.PARTIAL_BATCH_FAILURE


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_twitter_and_linkedin_with_one_image(self, settings, clock, platform_api, http_client):
        platform_api.on("POST", TWITTER_UPLOAD_URL, httpx.Response(200, json={"media_id_string": "555"}))
        platform_api.on("POST", TWITTER_TWEETS_URL, httpx.Response(201, json={"data": {"id": "1001"}}))
        platform_api.on("POST", f"{LINKEDIN_API}/assets", httpx.Response(200, json={"value": {
            "asset": "urn:li:digitalmediaAsset:D1",
            "uploadMechanism": {UPLOAD_MECHANISM: {"uploadUrl": "https://api.linkedin.com/mediaUpload/D1"}},
        }}))
        platform_api.on("POST", "https://api.linkedin.com/mediaUpload/D1", httpx.Response(201))
        platform_api.on("POST", f"{LINKEDIN_API}/ugcPosts", httpx.Response(201, json={"id": "urn:li:share:1"}))

        accounts = [
            make_account(Platform.TWITTER, oauth1=twitter_oauth1()),
            make_account(Platform.LINKEDIN),
        ]
        service = service_with(accounts, settings, clock, client=http_client)
        image = data_uri(jpeg_bytes(2 * MB), "image/jpeg")
        targets = targets_for(Platform.TWITTER, "acct-1") + targets_for(Platform.LINKEDIN, "acct-1")

        summary = await service.publish("user-1", targets, PublishRequest(text="Launch day", media=[image]))

        assert summary.attempted == 2
        assert summary.succeeded == 2
        assert summary.outcome is None
        twitter_result, linkedin_result = summary.results
        assert twitter_result.platform_post_id == "1001"
        assert twitter_result.published_at == clock.now()
        assert linkedin_result.platform_post_id == "urn:li:share:1"
        assert len(platform_api.calls("POST", "https://api.linkedin.com/mediaUpload/D1")[0].content) == 2 * MB

        tweet = json.loads(platform_api.calls("POST", TWITTER_TWEETS_URL)[0].content)
        assert tweet == {"text": "Launch day", "media": {"media_ids": ["555"]}}

    @pytest.mark.asyncio
    async def test_preflight_reports_accounts(self, settings, clock, http_client):
        accounts = [make_account(Platform.TWITTER), make_account(Platform.LINKEDIN, is_active=False)]
        service = service_with(accounts, settings, clock, client=http_client)

        report = await service.preflight("user-1")

        assert report.valid == targets_for(Platform.TWITTER, "acct-1")
        assert report.needs_reconnection == targets_for(Platform.LINKEDIN, "acct-1")

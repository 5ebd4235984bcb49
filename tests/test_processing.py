"""Tests for the media processing poller"""
import pytest

from conftest import FakeClock
from crosspost.models import ProcessingState
from crosspost.publishers.exceptions import ProcessingFailedException, ProcessingTimeoutException
from crosspost.publishers.processing import ProcessingPoller, ProcessingStatus


def scripted(*states):
    """Status check returning the given statuses in order (last one repeats)."""
    statuses = list(states)
    calls = []

    async def check():
        calls.append(1)
        return statuses.pop(0) if len(statuses) > 1 else statuses[0]

    check.calls = calls
    return check


PENDING = ProcessingStatus(ProcessingState.PENDING)
PROCESSING = ProcessingStatus(ProcessingState.PROCESSING)
READY = ProcessingStatus(ProcessingState.READY)


class TestProcessingPoller:
    @pytest.mark.asyncio
    async def test_ready_after_pending(self):
        clock = FakeClock()
        poller = ProcessingPoller(clock, interval=5, max_attempts=10, platform="twitter")
        check = scripted(PENDING, PROCESSING, READY)

        status = await poller.wait_until_ready(check, media_id="m1")

        assert status.state == ProcessingState.READY
        assert len(check.calls) == 3
        assert clock.sleeps == [5, 5]

    @pytest.mark.asyncio
    async def test_server_wait_hint_is_honoured_with_floor(self):
        clock = FakeClock()
        poller = ProcessingPoller(clock, interval=5, max_attempts=10, min_interval=1)
        check = scripted(
            ProcessingStatus(ProcessingState.PROCESSING, check_after=2),
            ProcessingStatus(ProcessingState.PROCESSING, check_after=0.2),
            READY,
        )

        await poller.wait_until_ready(check)

        assert clock.sleeps == [2, 1]

    @pytest.mark.asyncio
    async def test_initial_status_wait_precedes_first_check(self):
        clock = FakeClock()
        poller = ProcessingPoller(clock, interval=5, max_attempts=3)
        check = scripted(READY)

        await poller.wait_until_ready(check, initial=ProcessingStatus(ProcessingState.PENDING, check_after=3))

        assert clock.sleeps == [3]
        assert len(check.calls) == 1

    @pytest.mark.asyncio
    async def test_terminal_initial_status_skips_polling(self):
        poller = ProcessingPoller(FakeClock(), interval=5, max_attempts=3)
        check = scripted(PENDING)

        status = await poller.wait_until_ready(check, initial=READY)

        assert status is READY
        assert check.calls == []

    @pytest.mark.asyncio
    async def test_failed_state_raises(self):
        poller = ProcessingPoller(FakeClock(), interval=5, max_attempts=10, platform="twitter")
        check = scripted(PROCESSING, ProcessingStatus(ProcessingState.FAILED, detail="InvalidMedia"))

        with pytest.raises(ProcessingFailedException, match="InvalidMedia"):
            await poller.wait_until_ready(check, media_id="m1")

    @pytest.mark.asyncio
    async def test_exhaustion_raises_timeout_without_trailing_sleep(self):
        clock = FakeClock()
        poller = ProcessingPoller(clock, interval=10, max_attempts=3)
        check = scripted(PROCESSING)

        with pytest.raises(ProcessingTimeoutException):
            await poller.wait_until_ready(check)

        assert len(check.calls) == 3
        assert clock.sleeps == [10, 10]
        assert poller.attempts == 3

    @pytest.mark.asyncio
    async def test_exhaustion_can_proceed(self):
        poller = ProcessingPoller(FakeClock(), interval=10, max_attempts=2, proceed_on_exhaustion=True)

        status = await poller.wait_until_ready(scripted(PROCESSING))

        assert status.state == ProcessingState.PROCESSING

    @pytest.mark.asyncio
    async def test_deadline_stops_polling(self):
        clock = FakeClock()
        poller = ProcessingPoller(clock, interval=5, max_attempts=100, deadline=12)
        check = scripted(PROCESSING)

        with pytest.raises(ProcessingTimeoutException, match="deadline"):
            await poller.wait_until_ready(check, media_id="m1")

        assert clock.sleeps == [5, 5]
        assert len(check.calls) == 3

"""
Asynchronous media processing state machine.

Twitter video and Instagram containers are processed server-side after
upload; the post can only be published once processing reports READY.
``ProcessingPoller`` drives ``pending -> processing -> ready | failed`` with
an attempt bound, a per-status wait hint and an optional absolute deadline.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from loguru import logger

from ..models import ProcessingState
from ..utils.clock import Clock
from .exceptions import ProcessingFailedException, ProcessingTimeoutException


@dataclass
class ProcessingStatus:
    state: ProcessingState
    check_after: Optional[float] = None
    detail: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (ProcessingState.READY, ProcessingState.FAILED)


StatusCheck = Callable[[], Awaitable[ProcessingStatus]]


class ProcessingPoller:
    """
    Poll a status endpoint until processing reaches a terminal state.

    Args:
        clock: Time source for sleeping and deadline checks
        interval: Default wait between checks (seconds)
        max_attempts: Status checks before giving up
        deadline: Absolute ``clock.monotonic()`` value; a wait that would
            cross it raises ProcessingTimeoutException
        proceed_on_exhaustion: Return the last status instead of raising
            when ``max_attempts`` is used up
        min_interval: Lower bound applied to server wait hints
        platform: Platform name used in errors and logs
    """

    def __init__(
        self,
        clock: Clock,
        interval: float,
        max_attempts: int,
        deadline: Optional[float] = None,
        proceed_on_exhaustion: bool = False,
        min_interval: float = 0.0,
        platform: Optional[str] = None,
    ):
        self.clock = clock
        self.interval = interval
        self.max_attempts = max_attempts
        self.deadline = deadline
        self.proceed_on_exhaustion = proceed_on_exhaustion
        self.min_interval = min_interval
        self.platform = platform
        self.attempts = 0

    def _wait_for(self, status: ProcessingStatus) -> float:
        wait = status.check_after if status.check_after else self.interval
        return max(wait, self.min_interval)

    async def _sleep(self, wait: float, media_id: str) -> None:
        if self.deadline is not None and self.clock.monotonic() + wait > self.deadline:
            raise ProcessingTimeoutException(
                f"{self.platform} media {media_id} still processing at the publish deadline",
                platform=self.platform,
            )
        await self.clock.sleep(wait)

    def _check_terminal(self, status: ProcessingStatus, media_id: str) -> bool:
        if status.state == ProcessingState.FAILED:
            raise ProcessingFailedException(
                f"{self.platform} media {media_id} processing failed: {status.detail or 'unknown error'}",
                platform=self.platform,
            )
        return status.state == ProcessingState.READY

    async def wait_until_ready(
        self, check: StatusCheck, media_id: str = "", initial: Optional[ProcessingStatus] = None
    ) -> ProcessingStatus:
        """
        Run the state machine.

        Args:
            check: Coroutine function returning the current status
            media_id: Id used in logs and errors
            initial: Status already known (e.g. from FINALIZE); when not
                terminal, its wait hint is honoured before the first check

        Returns:
            The READY status, or the last non-terminal status when
            ``proceed_on_exhaustion`` is set and attempts ran out

        Raises:
            ProcessingFailedException: Platform reported failure
            ProcessingTimeoutException: Attempts exhausted or deadline reached
        """
        status = initial
        if status is not None:
            if self._check_terminal(status, media_id):
                return status
            await self._sleep(self._wait_for(status), media_id)

        for attempt in range(1, self.max_attempts + 1):
            self.attempts = attempt
            status = await check()
            logger.debug(f"{self.platform} media {media_id} status check {attempt}/{self.max_attempts}: {status.state.value}")

            if self._check_terminal(status, media_id):
                return status

            if attempt < self.max_attempts:
                await self._sleep(self._wait_for(status), media_id)

        if self.proceed_on_exhaustion:
            logger.warning(
                f"{self.platform} media {media_id} not confirmed ready after {self.max_attempts} checks, proceeding"
            )
            return status

        raise ProcessingTimeoutException(
            f"{self.platform} media {media_id} did not finish processing after {self.max_attempts} checks",
            platform=self.platform,
        )

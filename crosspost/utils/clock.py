"""
Time source used by token expiry checks and processing pollers.

Pass a different implementation to the services to control time in tests.
"""
import asyncio
import time
from datetime import datetime, timezone


class Clock:
    """Wall clock plus monotonic clock plus asyncio sleep."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

"""
Clock and cancellable timers.

Debounce and interval scheduling go through a ``Clock`` so tests can drive
time by hand instead of sleeping.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as naive UTC."""
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds unless cancelled."""
        ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class LoopClock:
    """Wall clock backed by the running asyncio event loop."""

    def now(self) -> datetime:
        return utcnow()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

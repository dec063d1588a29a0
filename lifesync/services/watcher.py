"""
Change-trigger watcher.

Collapses bursts of local writes into one push-only reconciliation per
(user, provider) using a trailing-edge debounce. Pulls are never scheduled
from here so in-progress remote edits are not clobbered.
"""

import asyncio
import logging
from typing import Optional

from lifesync.core.clock import Clock, LoopClock, TimerHandle
from lifesync.core.errors import AlreadyRunning, SyncError
from lifesync.schemas.sync import LocalChangeKind, SyncDirection, SyncReport, SyncTrigger
from lifesync.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


class ChangeTriggerWatcher:
    """Per-(user, provider) debounce timers feeding the reconciliation engine."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        clock: Optional[Clock] = None,
        quiet_period: float = 5.0,
    ):
        self.engine = engine
        self.clock = clock or LoopClock()
        self.quiet_period = quiet_period
        self._timers: dict[tuple[str, str], TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def on_local_change(
        self,
        user_id: str,
        provider: str,
        change_kind: LocalChangeKind = LocalChangeKind.UPDATED,
    ) -> None:
        """Record a local change; a pending timer for the same pair is reset."""
        key = (user_id, provider)
        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()

        logger.debug(
            f"Local {change_kind.value} for {provider}/{user_id}; "
            f"push in {self.quiet_period:g}s"
        )
        self._timers[key] = self.clock.call_later(
            self.quiet_period, lambda: self._fire(key)
        )

    def pending(self, user_id: str, provider: str) -> bool:
        return (user_id, provider) in self._timers

    def cancel(self, user_id: str, provider: str) -> bool:
        handle = self._timers.pop((user_id, provider), None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def teardown(self, user_id: Optional[str] = None) -> int:
        """
        Cancel pending timers, for one user or for everyone.

        Returns:
            Number of timers cancelled
        """
        keys = [key for key in self._timers if user_id is None or key[0] == user_id]
        for key in keys:
            self._timers.pop(key).cancel()
        if keys:
            logger.info(f"Cancelled {len(keys)} pending push timer(s)")
        return len(keys)

    async def drain(self) -> None:
        """Wait for pushes that already fired."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self, key: tuple[str, str]) -> None:
        if self._timers.pop(key, None) is None:
            return
        task = asyncio.ensure_future(self._push(*key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _push(self, user_id: str, provider: str) -> Optional[SyncReport]:
        try:
            return await self.engine.reconcile(
                user_id,
                provider,
                trigger=SyncTrigger.LOCAL_CHANGE,
                direction=SyncDirection.PUSH,
            )
        except AlreadyRunning as e:
            # The running job or the next scheduled pass picks the change up
            logger.info(f"Debounced push dropped: {e.message}")
        except SyncError as e:
            logger.warning(f"Debounced push for {provider}/{user_id} not run: {e.describe()}")
        return None

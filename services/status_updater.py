"""Background task that keeps an owner's event statuses current."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from core.constants import StatusUpdateDefaults
from core.exceptions import ValidationError
from core.logger import get_logger
from services.status_engine import EventStatusService, StatusUpdateResult

logger = get_logger(__name__)


@dataclass(frozen=True)
class StatusUpdateNotice:
    owner_id: str
    updated_count: int
    timestamp: datetime


Listener = Callable[[StatusUpdateNotice], Union[None, Awaitable[None]]]


class AutoStatusUpdater:
    """Runs :meth:`EventStatusService.auto_update_all_statuses` periodically.

    One instance serves one owner at a time. Listeners are told whenever a
    tick changed at least one event.
    """

    def __init__(
        self,
        status_service: EventStatusService,
        interval_seconds: float = StatusUpdateDefaults.INTERVAL_SECONDS,
    ) -> None:
        if interval_seconds <= 0:
            raise ValidationError("Status update interval must be positive")
        self.status_service = status_service
        self.interval_seconds = interval_seconds
        self.owner_id: Optional[str] = None
        self.running = False
        self.last_run: Optional[datetime] = None
        self.last_result: Optional[StatusUpdateResult] = None
        self._listeners: List[Listener] = []
        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()

    async def start(self, owner_id: str) -> None:
        """Tick now, then every interval. No-op while already running."""
        if self.running:
            logger.warning("Status updater is already running")
            return

        self.owner_id = owner_id
        self.running = True
        self._loop_task = asyncio.create_task(self._run_loop())
        logger.info(f"Status updater started for owner {owner_id} (interval: {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop scheduling ticks. A tick already running is left to finish."""
        if not self.running:
            return

        self.running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        logger.info("Status updater stopped")

    async def _run_loop(self) -> None:
        while self.running:
            tick = asyncio.create_task(self.update_statuses())
            self._in_flight.add(tick)
            tick.add_done_callback(self._in_flight.discard)
            try:
                # Shielded so that stop() cancels the schedule, not the tick
                await asyncio.shield(tick)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in status update loop: {e}", exc_info=True)

            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break

    async def update_statuses(self) -> StatusUpdateResult:
        """Run one update for the current owner and notify listeners."""
        owner_id = self.owner_id
        if owner_id is None:
            return StatusUpdateResult(error=ValidationError("No owner to update statuses for"))

        result = await self.status_service.auto_update_all_statuses(owner_id)
        self.last_run = self.status_service.clock()
        self.last_result = result

        if not result.success:
            logger.warning(f"Status update tick for owner {owner_id} failed: {result.error}")
        elif result.updated > 0:
            logger.info(f"Updated {result.updated} event statuses for owner {owner_id}")
            await self._notify(StatusUpdateNotice(owner_id, result.updated, self.last_run))
        return result

    async def drain(self) -> None:
        """Wait for ticks that are currently running."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        self._listeners.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def _notify(self, notice: StatusUpdateNotice) -> None:
        for callback in list(self._listeners):
            try:
                outcome = callback(notice)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Status update listener {callback!r} failed: {e}", exc_info=True)

    async def set_update_interval(self, seconds: float) -> None:
        """Change the interval; a running updater restarts for the same owner."""
        if seconds <= 0:
            raise ValidationError("Status update interval must be positive")
        self.interval_seconds = seconds
        if self.running and self.owner_id is not None:
            owner_id = self.owner_id
            await self.stop()
            await self.start(owner_id)

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "owner_id": self.owner_id,
            "interval_seconds": self.interval_seconds,
            "listeners": len(self._listeners),
            "in_flight": len(self._in_flight),
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_updated": self.last_result.updated if self.last_result else None,
            "last_error": str(self.last_result.error) if self.last_result and self.last_result.error else None,
        }

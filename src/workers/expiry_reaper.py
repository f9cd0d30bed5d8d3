"""Expiry reaper: background sweep that reclaims lapsed leases.

Every interval the reaper scans SlotStore for LOCKED slots whose
locked_until has passed and expires each one through
ReservationManager.expire, the same LOCKED -> AVAILABLE compare-and-set
that a manual cancel uses (reason=expired). Each sweep then prunes
finished appointments past their retention window. Several reapers may run
against the same manager: a slot already moved by one of them is a
no-op for the others.
"""

import asyncio
import contextlib
import logging

from src.services.reservation_manager import ReservationManager
from src.shared.response_models import SweepResult

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 15


class ExpiryReaper:
    """Periodic expiry sweep bound to one ReservationManager."""

    def __init__(
        self,
        manager: ReservationManager,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        name: str = "reaper",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if interval_seconds >= manager.lock_ttl.total_seconds():
            raise ValueError("Reaper interval must be shorter than the lock TTL")
        self.manager = manager
        self.interval_seconds = interval_seconds
        self.name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """True while the background loop is active."""
        return self._task is not None and not self._task.done()

    async def sweep(self) -> SweepResult:
        """Expire every lease that has run out, then prune old records.

        Returns:
            SweepResult with how many expired leases were seen, how
            many this sweep actually released and how many finished
            appointments were forgotten.
        """
        now = self.manager.clock()
        expired = self.manager.store.expired_locks(now)
        released_ids: list[str] = []
        for slot in expired:
            if slot.appointment_id and await self.manager.expire(slot.appointment_id):
                released_ids.append(slot.appointment_id)
        pruned = await self.manager.prune()
        if expired or pruned:
            logger.info(
                "reaper_sweep",
                extra={
                    "reaper": self.name,
                    "scanned": len(expired),
                    "released": len(released_ids),
                    "pruned": pruned,
                },
            )
        return SweepResult(
            scanned=len(expired),
            released=len(released_ids),
            appointment_ids=released_ids,
            pruned=pruned,
        )

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("reaper_started", extra={"reaper": self.name})

    async def stop(self) -> None:
        """Stop the background sweep loop and wait for it to exit."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("reaper_stopped", extra={"reaper": self.name})

    async def _loop(self) -> None:
        while True:
            try:
                await self.sweep()
            except Exception:
                logger.exception("reaper_sweep_failed", extra={"reaper": self.name})
            await asyncio.sleep(self.interval_seconds)

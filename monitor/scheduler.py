"""Periodic and manual cycle triggers with at most one cycle in flight."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

import config
from monitor.polling_cycle import CycleStats

logger = logging.getLogger(__name__)

ALREADY_RUNNING_MESSAGE = "Polling cycle is already running"


@dataclass(frozen=True)
class TriggerResult:
    success: bool
    message: str
    stats: CycleStats | None = None


class CycleScheduler:
    def __init__(self, orchestrator, health=None, poll_interval_seconds: float | None = None) -> None:
        self.orchestrator = orchestrator
        self.health = health
        self.poll_interval_seconds = float(
            poll_interval_seconds if poll_interval_seconds is not None else config.POLL_INTERVAL_SECONDS
        )
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self, trigger: str = "scheduled") -> CycleStats | None:
        """Run one cycle; returns None without running when one is already in flight."""
        if self._running:
            logger.warning("CYCLE_SKIP trigger=%s reason=already_running", trigger)
            return None

        self._running = True
        started = time.monotonic()
        try:
            stats = await self.orchestrator.run_cycle()
            if self.health is not None:
                self.health.mark_cycle_completed()
        finally:
            self._running = False

        elapsed = time.monotonic() - started
        if elapsed > self.poll_interval_seconds:
            logger.warning(
                "CYCLE_OVERRUN trigger=%s duration=%.2fs interval=%.0fs",
                trigger,
                elapsed,
                self.poll_interval_seconds,
            )
        return stats

    async def trigger_manual(self) -> TriggerResult:
        if self._running:
            return TriggerResult(success=False, message=ALREADY_RUNNING_MESSAGE)
        stats = await self.run_once(trigger="manual")
        if stats is None:
            return TriggerResult(success=False, message=ALREADY_RUNNING_MESSAGE)
        return TriggerResult(success=True, message="Manual polling cycle completed", stats=stats)

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        logger.info("Scheduler started interval=%.0fs", self.poll_interval_seconds)
        while not stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Polling cycle error")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")

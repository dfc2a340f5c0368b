from __future__ import annotations

import asyncio
import unittest
from datetime import datetime, timezone

from monitor.polling_cycle import CycleStats
from monitor.scheduler import ALREADY_RUNNING_MESSAGE, CycleScheduler


class BlockingOrchestrator:
    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.calls = 0

    async def run_cycle(self) -> CycleStats:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return CycleStats(start_time=datetime(2026, 3, 1, tzinfo=timezone.utc), processed=2)


class FailingOrchestrator:
    async def run_cycle(self) -> CycleStats:
        raise RuntimeError("bookkeeping failed")


class HealthSpy:
    def __init__(self) -> None:
        self.marks = 0

    def mark_cycle_completed(self) -> None:
        self.marks += 1


class CycleSchedulerTests(unittest.IsolatedAsyncioTestCase):
    async def test_manual_trigger_while_running_reports_already_running(self) -> None:
        orchestrator = BlockingOrchestrator()
        health = HealthSpy()
        scheduler = CycleScheduler(orchestrator, health, poll_interval_seconds=60)

        background = asyncio.create_task(scheduler.run_once())
        await orchestrator.started.wait()
        self.assertTrue(scheduler.is_running)

        result = await scheduler.trigger_manual()
        self.assertFalse(result.success)
        self.assertEqual(result.message, ALREADY_RUNNING_MESSAGE)
        self.assertIsNone(await scheduler.run_once())

        orchestrator.release.set()
        stats = await background
        self.assertEqual(stats.processed, 2)
        self.assertEqual(orchestrator.calls, 1)
        self.assertEqual(health.marks, 1)
        self.assertFalse(scheduler.is_running)

    async def test_manual_trigger_runs_cycle(self) -> None:
        orchestrator = BlockingOrchestrator()
        orchestrator.release.set()
        scheduler = CycleScheduler(orchestrator, poll_interval_seconds=60)
        result = await scheduler.trigger_manual()
        self.assertTrue(result.success)
        self.assertEqual(result.stats.processed, 2)

    async def test_running_flag_cleared_after_failure(self) -> None:
        scheduler = CycleScheduler(FailingOrchestrator(), HealthSpy(), poll_interval_seconds=60)
        with self.assertRaises(RuntimeError):
            await scheduler.run_once()
        self.assertFalse(scheduler.is_running)
        self.assertEqual(scheduler.health.marks, 0)

    async def test_run_forever_stops_on_event(self) -> None:
        orchestrator = BlockingOrchestrator()
        orchestrator.release.set()
        scheduler = CycleScheduler(orchestrator, poll_interval_seconds=0.01)
        stop = asyncio.Event()
        task = asyncio.create_task(scheduler.run_forever(stop))
        while orchestrator.calls < 2:
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=1)
        self.assertGreaterEqual(orchestrator.calls, 2)


if __name__ == "__main__":
    unittest.main()

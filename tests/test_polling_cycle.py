from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from monitor.cap_guard import MarketCapGuard
from monitor.crossing_tracker import MilestoneCrossingTracker
from monitor.errors import NotificationError
from monitor.models import Group, MilestoneConfig, Token
from monitor.polling_cycle import PollingCycleOrchestrator

ADDR = "So1anaTokenAddr11111111111111111111111111111"


class FakeClock:
    def __init__(self) -> None:
        self.current = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeTokenSource:
    def __init__(self, tokens: dict[Group, list[Token]]) -> None:
        self.tokens = tokens
        self.calls: list[Group] = []

    async def list_active(self, group: Group) -> list[Token]:
        self.calls.append(group)
        return list(self.tokens.get(group, []))

    async def health_check(self) -> bool:
        return True


class FakeMilestoneSource:
    def __init__(self, milestones: dict[Group, list[MilestoneConfig]], failing: set[Group] | None = None) -> None:
        self.milestones = milestones
        self.failing = failing or set()
        self.calls: list[Group] = []

    async def list_active(self, group: Group) -> list[MilestoneConfig]:
        self.calls.append(group)
        if group in self.failing:
            raise RuntimeError("milestone table unavailable")
        return list(self.milestones.get(group, []))


class FakeLedger:
    def __init__(self) -> None:
        self.records: list[tuple] = []
        self.notified: set[tuple[int, float]] = set()
        self.record_failures = 0

    async def was_notified(self, token_id: int, milestone_value: float) -> bool:
        return (token_id, float(milestone_value)) in self.notified

    async def record(self, token_id, token_address, group, milestone_value, milestone_label) -> None:
        if self.record_failures > 0:
            self.record_failures -= 1
            raise RuntimeError("database is locked")
        self.records.append((token_id, token_address, group, milestone_value, milestone_label))
        self.notified.add((token_id, float(milestone_value)))


class FakeProvider:
    def __init__(self) -> None:
        self.caps: dict[str, float | None] = {}
        self.fetch_calls = 0

    def name(self) -> str:
        return "fake"

    async def fetch(self, tokens) -> dict[str, float | None]:
        self.fetch_calls += 1
        return dict(self.caps)

    async def health_check(self) -> bool:
        return True


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[Group, str]] = []
        self.failures = 0

    async def send(self, group: Group, message: str) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise NotificationError("telegram", "chat not found")
        self.sent.append((group, message))

    async def health_check(self) -> bool:
        return True


def _token(token_id: int = 1, address: str = ADDR, initial: float | None = 1_000_000.0) -> Token:
    return Token(
        id=token_id,
        token_address=address,
        symbol=f"TKN{token_id}",
        initial_market_cap_usd=initial,
        first_called_at_utc=datetime(2026, 2, 27, 9, 30, tzinfo=timezone.utc),
    )


def _milestone(value: float, mid: int = 1, group: Group = Group.FSM) -> MilestoneConfig:
    return MilestoneConfig(id=mid, group_name=group, milestone_value=value, milestone_label=f"{value:g}x")


class PollingCycleTests(unittest.IsolatedAsyncioTestCase):
    def _build(
        self,
        *,
        tokens: list[Token] | None = None,
        milestones: list[MilestoneConfig] | None = None,
        threshold: int = 3,
        cooldown: float = 300,
    ) -> PollingCycleOrchestrator:
        self.clock = FakeClock()
        self.tokens = FakeTokenSource({Group.FSM: tokens if tokens is not None else [_token()]})
        self.milestones = FakeMilestoneSource({Group.FSM: milestones if milestones is not None else [_milestone(2)]})
        self.ledger = FakeLedger()
        self.provider = FakeProvider()
        self.notifier = FakeNotifier()
        return PollingCycleOrchestrator(
            token_source=self.tokens,
            milestone_source=self.milestones,
            ledger=self.ledger,
            provider=self.provider,
            notifier=self.notifier,
            clock=self.clock,
            guard=MarketCapGuard(max_change_ratio=3.0, clock=self.clock),
            tracker=MilestoneCrossingTracker(consecutive_threshold=threshold, cooldown_seconds=cooldown, clock=self.clock),
            groups=(Group.FSM,),
        )

    async def _cycle(self, orchestrator: PollingCycleOrchestrator, cap: float | None):
        self.provider.caps = {ADDR: cap}
        stats = await orchestrator.run_cycle()
        self.clock.advance(60)
        return stats

    async def test_alert_fires_once_on_third_consecutive_crossing(self) -> None:
        orchestrator = self._build()
        first = await self._cycle(orchestrator, 2_000_000)
        second = await self._cycle(orchestrator, 2_000_000)
        self.assertEqual(self.notifier.sent, [])
        self.assertEqual(first.alerts_sent + second.alerts_sent, 0)

        third = await self._cycle(orchestrator, 2_000_000)
        self.assertEqual(third.alerts_sent, 1)
        self.assertEqual(third.processed, 1)
        self.assertEqual(third.errors, 0)
        self.assertEqual(len(self.notifier.sent), 1)
        self.assertEqual(self.ledger.records, [(1, ADDR, Group.FSM, 2, "2x")])
        self.assertEqual(orchestrator.tracker.count(1, 2), 0)

    async def test_guard_rejected_cycle_does_not_count(self) -> None:
        orchestrator = self._build()
        results = []
        for cap in (2_000_000, 500_000, 2_000_000, 2_000_000, 2_000_000):
            results.append(await self._cycle(orchestrator, cap))

        self.assertEqual(results[1].skipped, 1)
        self.assertEqual([r.alerts_sent for r in results], [0, 0, 0, 1, 0])
        self.assertEqual(len(self.notifier.sent), 1)
        self.assertEqual(len(self.ledger.records), 1)

    async def test_failed_group_does_not_stop_sibling_group(self) -> None:
        self.clock = FakeClock()
        tokens = FakeTokenSource({Group.ISSAM: []})
        milestones = FakeMilestoneSource(
            {Group.ISSAM: [_milestone(2, group=Group.ISSAM)]},
            failing={Group.FSM},
        )
        provider = FakeProvider()
        orchestrator = PollingCycleOrchestrator(
            token_source=tokens,
            milestone_source=milestones,
            ledger=FakeLedger(),
            provider=provider,
            notifier=FakeNotifier(),
            clock=self.clock,
            groups=(Group.FSM, Group.ISSAM),
        )
        stats = await orchestrator.run_cycle()

        self.assertEqual(stats.errors, 1)
        self.assertEqual(stats.processed, 0)
        self.assertEqual(milestones.calls, [Group.FSM, Group.ISSAM])
        self.assertEqual(tokens.calls, [Group.ISSAM])
        self.assertEqual(provider.fetch_calls, 0)

    async def test_already_notified_pair_is_never_sent_again(self) -> None:
        orchestrator = self._build(threshold=1)
        self.ledger.notified.add((1, 2.0))
        for _ in range(5):
            stats = await self._cycle(orchestrator, 2_000_000)
            self.assertEqual(stats.alerts_sent, 0)
            self.assertEqual(stats.errors, 0)
        self.assertEqual(self.notifier.sent, [])
        self.assertEqual(self.ledger.records, [])
        self.assertEqual(orchestrator.tracker.count(1, 2), 0)

    async def test_recorded_pair_is_not_resent_after_cooldown(self) -> None:
        orchestrator = self._build(threshold=1, cooldown=60)
        for _ in range(6):
            await self._cycle(orchestrator, 2_000_000)
        self.assertEqual(len(self.notifier.sent), 1)
        self.assertEqual(len(self.ledger.records), 1)

    async def test_send_failure_is_retried_on_next_confirming_cycle(self) -> None:
        orchestrator = self._build()
        self.notifier.failures = 1
        await self._cycle(orchestrator, 2_000_000)
        await self._cycle(orchestrator, 2_000_000)
        failed = await self._cycle(orchestrator, 2_000_000)

        self.assertEqual(failed.errors, 1)
        self.assertEqual(failed.alerts_sent, 0)
        self.assertEqual(self.ledger.records, [])
        self.assertEqual(orchestrator.tracker.count(1, 2), 3)

        retried = await self._cycle(orchestrator, 2_000_000)
        self.assertEqual(retried.alerts_sent, 1)
        self.assertEqual(len(self.notifier.sent), 1)
        self.assertEqual(len(self.ledger.records), 1)

    async def test_cooldown_defers_next_milestone_until_window_lifts(self) -> None:
        orchestrator = self._build(milestones=[_milestone(3, mid=2), _milestone(2, mid=1)], cooldown=300)
        for _ in range(3):
            await self._cycle(orchestrator, 3_000_000)
        self.assertEqual(len(self.notifier.sent), 1)
        self.assertIn("2x", self.notifier.sent[0][1])
        # The 3x pair was not evaluated after the 2x alert started the cooldown.
        self.assertEqual(orchestrator.tracker.count(1, 3), 2)

        for _ in range(4):
            stats = await self._cycle(orchestrator, 3_000_000)
            self.assertEqual(stats.processed, 1)
            self.assertEqual(stats.skipped, 0)
            self.assertEqual(stats.alerts_sent, 0)
        self.assertEqual(orchestrator.tracker.count(1, 3), 2)

        lifted = await self._cycle(orchestrator, 3_000_000)
        self.assertEqual(lifted.alerts_sent, 1)
        self.assertIn("3x", self.notifier.sent[1][1])
        self.assertEqual(
            [(r[3], r[4]) for r in self.ledger.records],
            [(2, "2x"), (3, "3x")],
        )

    async def test_ledger_write_failure_retries_record_without_resending(self) -> None:
        orchestrator = self._build(threshold=1, cooldown=0)
        self.ledger.record_failures = 1
        first = await self._cycle(orchestrator, 2_000_000)
        self.assertEqual(first.alerts_sent, 1)
        self.assertEqual(first.errors, 1)
        self.assertEqual(self.ledger.records, [])

        second = await self._cycle(orchestrator, 2_000_000)
        self.assertEqual(second.alerts_sent, 0)
        self.assertEqual(second.errors, 0)
        self.assertEqual(len(self.notifier.sent), 1)
        self.assertEqual(len(self.ledger.records), 1)

        await self._cycle(orchestrator, 2_000_000)
        self.assertEqual(len(self.notifier.sent), 1)

    async def test_missing_cap_is_skipped(self) -> None:
        orchestrator = self._build()
        self.provider.caps = {}
        stats = await orchestrator.run_cycle()
        self.assertEqual(stats.processed, 1)
        self.assertEqual(stats.skipped, 1)
        self.assertEqual(stats.errors, 0)

    async def test_token_failure_does_not_stop_other_tokens(self) -> None:
        broken = _token(token_id=7, address="BrokenAddr", initial=None)
        orchestrator = self._build(tokens=[broken, _token()], threshold=1)
        self.provider.caps = {"BrokenAddr": 5_000_000, ADDR: 2_000_000}
        stats = await orchestrator.run_cycle()
        self.assertEqual(stats.processed, 2)
        self.assertEqual(stats.errors, 1)
        self.assertEqual(stats.alerts_sent, 1)

    async def test_group_without_milestones_fetches_nothing(self) -> None:
        orchestrator = self._build(milestones=[])
        stats = await orchestrator.run_cycle()
        self.assertEqual(stats.processed, 0)
        self.assertEqual(self.tokens.calls, [])
        self.assertEqual(self.provider.fetch_calls, 0)

    async def test_stats_record_duration_and_are_copies(self) -> None:
        orchestrator = self._build()
        stats = await self._cycle(orchestrator, 2_000_000)
        self.assertIsNotNone(stats.end_time)
        self.assertEqual(stats.duration_seconds, 0.0)
        snapshot = orchestrator.current_stats()
        snapshot.processed = 99
        self.assertEqual(orchestrator.current_stats().processed, 1)
        self.assertEqual(stats.to_dict()["processed"], 1)

    async def test_delisted_token_state_is_pruned(self) -> None:
        other = _token(token_id=2, address="OtherAddr")
        orchestrator = self._build(tokens=[_token(), other], milestones=[_milestone(2)])
        self.provider.caps = {ADDR: 2_000_000, "OtherAddr": 2_000_000}
        await orchestrator.run_cycle()
        self.assertEqual(orchestrator.tracker.count(1, 2), 1)

        self.tokens.tokens[Group.FSM] = [other]
        stats = await orchestrator.run_cycle()
        self.assertEqual(stats.errors, 0)
        self.assertEqual(orchestrator.tracker.count(1, 2), 0)
        self.assertEqual(orchestrator.tracker.count(2, 2), 2)
        self.assertIsNone(orchestrator.guard.last_known(ADDR))
        self.assertIsNotNone(orchestrator.guard.last_known("OtherAddr"))

    async def test_delisted_token_drops_cooldown_and_pending_record(self) -> None:
        orchestrator = self._build(threshold=1)
        self.ledger.record_failures = 1
        first = await self._cycle(orchestrator, 2_000_000)
        self.assertEqual(first.alerts_sent, 1)
        self.assertEqual(orchestrator._pending_records, {(1, 2.0)})
        self.assertEqual(orchestrator.tracker.snapshot()["tokens_in_cooldown"], 1)

        self.tokens.tokens[Group.FSM] = []
        await self._cycle(orchestrator, 2_000_000)
        self.assertEqual(orchestrator._pending_records, set())
        self.assertEqual(orchestrator.tracker.snapshot(), {"tracked_pairs": 0, "tokens_in_cooldown": 0})
        self.assertIsNone(orchestrator.guard.last_known(ADDR))

    async def test_incomplete_cycle_keeps_state(self) -> None:
        orchestrator = self._build()
        await self._cycle(orchestrator, 2_000_000)
        self.tokens.tokens[Group.FSM] = []
        self.milestones.failing = {Group.FSM}
        stats = await self._cycle(orchestrator, 2_000_000)
        self.assertEqual(stats.errors, 1)
        self.assertEqual(orchestrator.tracker.count(1, 2), 1)
        self.assertIsNotNone(orchestrator.guard.last_known(ADDR))

        self.milestones.failing = set()
        self.milestones.milestones[Group.FSM] = []
        await self._cycle(orchestrator, 2_000_000)
        self.assertEqual(orchestrator.tracker.count(1, 2), 1)

    async def test_provider_name_failure_does_not_abort_cycle(self) -> None:
        class NamelessProvider(FakeProvider):
            def name(self) -> str:
                raise RuntimeError("provider not configured")

        orchestrator = self._build(threshold=1)
        self.provider = orchestrator.provider = NamelessProvider()
        stats = await self._cycle(orchestrator, 2_000_000)
        self.assertEqual(stats.processed, 1)
        self.assertEqual(stats.alerts_sent, 1)
        self.assertEqual(stats.errors, 0)


if __name__ == "__main__":
    unittest.main()

"""One polling cycle: load groups, fetch caps, confirm crossings, alert once.

Collaborators are duck-typed and async:

- token_source: ``list_active(group) -> list[Token]``, ``health_check() -> bool``
- milestone_source: ``list_active(group) -> list[MilestoneConfig]``
- ledger: ``was_notified(token_id, milestone_value) -> bool``,
  ``record(token_id, token_address, group, milestone_value, milestone_label)``
- provider: ``fetch(tokens) -> dict[address, float | None]``, ``health_check()``, ``name()``
- notifier: ``send(group, text)`` (raises on failure), ``health_check()``

No exception from a token, a group or a single send escapes ``run_cycle``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Iterable

from monitor.alerter import format_milestone_message
from monitor.cap_guard import MarketCapGuard
from monitor.crossing_tracker import MilestoneCrossingTracker
from monitor.errors import classify_error
from monitor.milestone_policy import MilestonePolicy
from monitor.models import ALL_GROUPS, Group, MilestoneConfig, Token
from utils.clock import SystemClock

logger = logging.getLogger(__name__)


@dataclass
class CycleStats:
    start_time: datetime
    processed: int = 0
    alerts_sent: int = 0
    skipped: int = 0
    errors: int = 0
    end_time: datetime | None = None
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "alerts_sent": self.alerts_sent,
            "skipped": self.skipped,
            "errors": self.errors,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": (round(self.duration_seconds, 3) if self.duration_seconds is not None else None),
        }


class PollingCycleOrchestrator:
    def __init__(
        self,
        *,
        token_source,
        milestone_source,
        ledger,
        provider,
        notifier,
        clock=None,
        guard: MarketCapGuard | None = None,
        tracker: MilestoneCrossingTracker | None = None,
        groups: Iterable[Group] | None = None,
        message_builder: Callable[[Token, MilestoneConfig, float, Group], str] = format_milestone_message,
    ) -> None:
        self.token_source = token_source
        self.milestone_source = milestone_source
        self.ledger = ledger
        self.provider = provider
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.guard = guard or MarketCapGuard(clock=self.clock)
        self.tracker = tracker or MilestoneCrossingTracker(clock=self.clock)
        self.groups: tuple[Group, ...] = tuple(groups) if groups is not None else ALL_GROUPS
        self.message_builder = message_builder
        # Pairs whose message went out but whose ledger write failed.
        self._pending_records: set[tuple[Any, float]] = set()
        self._stats = CycleStats(start_time=self.clock.now())

    def current_stats(self) -> CycleStats:
        return replace(self._stats)

    async def run_cycle(self) -> CycleStats:
        self._stats = CycleStats(start_time=self.clock.now())
        provider_name = self._provider_name()
        logger.info("CYCLE_START groups=%s provider=%s", ",".join(g.value for g in self.groups), provider_name)

        listed: list[Token] = []
        complete = True
        for group in self.groups:
            try:
                tokens = await self._process_group(group, provider_name)
            except Exception as exc:
                complete = False
                self._stats.errors += 1
                logger.error(
                    "GROUP_FAILED group=%s code=%s err=%s",
                    group.value,
                    classify_error(exc),
                    exc,
                    exc_info=True,
                )
                continue
            if tokens is None:
                complete = False
            else:
                listed.extend(tokens)

        # Only a cycle that listed every group knows which tokens are gone.
        if complete:
            self._prune_inactive(listed)

        end_time = self.clock.now()
        self._stats.end_time = end_time
        self._stats.duration_seconds = max(0.0, (end_time - self._stats.start_time).total_seconds())
        logger.info(
            "CYCLE_DONE processed=%s alerts=%s skipped=%s errors=%s duration=%.2fs",
            self._stats.processed,
            self._stats.alerts_sent,
            self._stats.skipped,
            self._stats.errors,
            self._stats.duration_seconds,
        )
        return replace(self._stats)

    def _provider_name(self) -> str:
        try:
            return str(self.provider.name())
        except Exception as exc:
            logger.warning("PROVIDER_NAME_FAILED code=%s err=%s", classify_error(exc), exc)
            return "unknown"

    def _prune_inactive(self, tokens: list[Token]) -> None:
        active_ids = {t.id for t in tokens}
        self.tracker.prune(active_ids)
        self.guard.prune(t.token_address for t in tokens)
        stale = {key for key in self._pending_records if key[0] not in active_ids}
        if stale:
            self._pending_records -= stale
            logger.info("PENDING_RECORDS_DROPPED count=%s reason=token_inactive", len(stale))

    async def _process_group(self, group: Group, provider_name: str) -> list[Token] | None:
        """Returns the group's listed tokens, or None when tokens were never listed."""
        milestones = [m for m in await self.milestone_source.list_active(group) if m.is_active]
        if not milestones:
            logger.warning("GROUP_SKIP group=%s reason=no_active_milestones", group.value)
            return None
        policy = MilestonePolicy(milestones)

        tokens = await self.token_source.list_active(group)
        logger.info("GROUP_LOAD group=%s milestones=%s tokens=%s", group.value, len(milestones), len(tokens))
        if not tokens:
            return tokens

        caps = await self.provider.fetch(tokens) or {}
        priced = sum(1 for t in tokens if caps.get(t.token_address) is not None)
        logger.info("GROUP_CAPS group=%s provider=%s priced=%s/%s", group.value, provider_name, priced, len(tokens))

        for token in tokens:
            self._stats.processed += 1
            try:
                await self._process_token(group, token, caps.get(token.token_address), policy)
            except Exception as exc:
                self._stats.errors += 1
                logger.error(
                    "TOKEN_FAILED group=%s token_id=%s address=%s code=%s err=%s",
                    group.value,
                    token.id,
                    token.token_address,
                    classify_error(exc),
                    exc,
                    exc_info=True,
                )
        return tokens

    async def _process_token(
        self,
        group: Group,
        token: Token,
        raw_cap: float | None,
        policy: MilestonePolicy,
    ) -> None:
        if raw_cap is None:
            self._stats.skipped += 1
            logger.warning("TOKEN_SKIP group=%s symbol=%s address=%s reason=no_cap", group.value, token.symbol, token.token_address)
            return

        current_cap = self.guard.validate(token.token_address, raw_cap)
        if current_cap is None:
            self._stats.skipped += 1
            logger.warning(
                "TOKEN_SKIP group=%s symbol=%s address=%s reason=guard_rejected cap=%s",
                group.value,
                token.symbol,
                token.token_address,
                raw_cap,
            )
            return

        initial_cap = float(token.initial_market_cap_usd)
        for milestone in policy.milestones:
            # A successful send earlier in this loop starts the cooldown too.
            if self.tracker.in_cooldown(token.id):
                logger.debug(
                    "TOKEN_COOLDOWN group=%s symbol=%s remaining=%.0fs",
                    group.value,
                    token.symbol,
                    self.tracker.cooldown_remaining(token.id),
                )
                return
            crossed = policy.is_crossed(initial_cap, current_cap, milestone)
            if self.tracker.observe(token.id, milestone.milestone_value, crossed):
                await self._attempt_alert(group, token, milestone, current_cap, policy)

    async def _attempt_alert(
        self,
        group: Group,
        token: Token,
        milestone: MilestoneConfig,
        current_cap: float,
        policy: MilestonePolicy,
    ) -> None:
        key = (token.id, float(milestone.milestone_value))
        if key in self._pending_records:
            await self._retry_pending_record(group, token, milestone)
            return

        try:
            already = await self.ledger.was_notified(token.id, milestone.milestone_value)
        except Exception as exc:
            self._stats.errors += 1
            logger.error(
                "LEDGER_READ_FAILED group=%s token_id=%s milestone=%s code=%s err=%s",
                group.value,
                token.id,
                milestone.milestone_value,
                classify_error(exc),
                exc,
            )
            return
        if already:
            self.tracker.reset(token.id, milestone.milestone_value)
            logger.info(
                "ALERT_DUPLICATE group=%s symbol=%s milestone=%s token_id=%s",
                group.value,
                token.symbol,
                milestone.milestone_label,
                token.id,
            )
            return

        try:
            message = self.message_builder(token, milestone, current_cap, group)
            await self.notifier.send(group, message)
        except Exception as exc:
            # Tracker and ledger untouched: the next confirming cycle retries.
            self._stats.errors += 1
            logger.error(
                "ALERT_FAILED group=%s symbol=%s address=%s milestone=%s code=%s err=%s",
                group.value,
                token.symbol,
                token.token_address,
                milestone.milestone_value,
                classify_error(exc),
                exc,
            )
            return

        self._stats.alerts_sent += 1
        self.tracker.reset(token.id, milestone.milestone_value)
        self.tracker.start_cooldown(token.id)
        logger.info(
            "ALERT_SENT group=%s symbol=%s address=%s milestone=%s multiple=%.2fx",
            group.value,
            token.symbol,
            token.token_address,
            milestone.milestone_label,
            policy.multiple(float(token.initial_market_cap_usd), current_cap),
        )

        try:
            await self.ledger.record(
                token.id,
                token.token_address,
                group,
                milestone.milestone_value,
                milestone.milestone_label,
            )
        except Exception as exc:
            self._stats.errors += 1
            self._pending_records.add(key)
            logger.error(
                "LEDGER_WRITE_FAILED group=%s token_id=%s milestone=%s code=%s err=%s",
                group.value,
                token.id,
                milestone.milestone_value,
                classify_error(exc),
                exc,
            )

    async def _retry_pending_record(self, group: Group, token: Token, milestone: MilestoneConfig) -> None:
        key = (token.id, float(milestone.milestone_value))
        try:
            await self.ledger.record(
                token.id,
                token.token_address,
                group,
                milestone.milestone_value,
                milestone.milestone_label,
            )
        except Exception as exc:
            self._stats.errors += 1
            logger.error(
                "LEDGER_WRITE_FAILED group=%s token_id=%s milestone=%s retry=true code=%s err=%s",
                group.value,
                token.id,
                milestone.milestone_value,
                classify_error(exc),
                exc,
            )
            return
        self._pending_records.discard(key)
        self.tracker.reset(token.id, milestone.milestone_value)
        logger.info("LEDGER_RECOVERED group=%s token_id=%s milestone=%s", group.value, token.id, milestone.milestone_value)

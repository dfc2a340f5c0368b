"""Consecutive-confirmation counters and per-token alert cooldown.

State is process-local. The notification ledger stays the source of truth for
"already alerted"; this tracker only decides when a crossing is stable enough
to attempt an alert, and how soon a token may alert again.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Hashable, Iterable

import config
from utils.clock import SystemClock

logger = logging.getLogger(__name__)

CrossingKey = tuple[Hashable, float]


class MilestoneCrossingTracker:
    def __init__(
        self,
        consecutive_threshold: int | None = None,
        cooldown_seconds: float | None = None,
        clock=None,
    ) -> None:
        threshold = int(consecutive_threshold if consecutive_threshold is not None else config.CONSECUTIVE_THRESHOLD)
        cooldown = float(cooldown_seconds if cooldown_seconds is not None else config.ALERT_COOLDOWN_SECONDS)
        if threshold < 1:
            raise ValueError(f"consecutive_threshold must be >= 1, got {threshold}")
        if cooldown < 0:
            raise ValueError(f"cooldown_seconds must be >= 0, got {cooldown}")
        self.consecutive_threshold = threshold
        self.cooldown_seconds = cooldown
        self._clock = clock or SystemClock()
        self._counts: dict[CrossingKey, int] = {}
        self._last_alert_at: dict[Hashable, datetime] = {}

    @staticmethod
    def _key(token_id: Hashable, milestone_value: float) -> CrossingKey:
        return (token_id, float(milestone_value))

    def count(self, token_id: Hashable, milestone_value: float) -> int:
        return self._counts.get(self._key(token_id, milestone_value), 0)

    def observe(self, token_id: Hashable, milestone_value: float, crossed: bool) -> bool:
        """Record one cycle's crossing result; True means the crossing is confirmed."""
        key = self._key(token_id, milestone_value)
        if not crossed:
            if self._counts.pop(key, 0):
                logger.debug("CROSSING_RESET token_id=%s milestone=%s reason=not_crossed", token_id, milestone_value)
            return False
        count = self._counts.get(key, 0) + 1
        self._counts[key] = count
        logger.debug(
            "CROSSING_COUNT token_id=%s milestone=%s count=%s/%s",
            token_id,
            milestone_value,
            count,
            self.consecutive_threshold,
        )
        return count >= self.consecutive_threshold

    def reset(self, token_id: Hashable, milestone_value: float) -> None:
        self._counts.pop(self._key(token_id, milestone_value), None)

    def start_cooldown(self, token_id: Hashable) -> None:
        self._last_alert_at[token_id] = self._clock.now()

    def cooldown_remaining(self, token_id: Hashable) -> float:
        started = self._last_alert_at.get(token_id)
        if started is None:
            return 0.0
        elapsed = (self._clock.now() - started).total_seconds()
        remaining = self.cooldown_seconds - elapsed
        if remaining <= 0:
            del self._last_alert_at[token_id]
            return 0.0
        return remaining

    def in_cooldown(self, token_id: Hashable) -> bool:
        return self.cooldown_remaining(token_id) > 0

    def prune(self, active_token_ids: Iterable[Hashable]) -> None:
        """Drop counters and cooldowns of tokens that are no longer active."""
        keep = set(active_token_ids)
        for key in [k for k in self._counts if k[0] not in keep]:
            del self._counts[key]
        for token_id in [t for t in self._last_alert_at if t not in keep]:
            del self._last_alert_at[token_id]

    def snapshot(self) -> dict[str, int]:
        return {
            "tracked_pairs": len(self._counts),
            "tokens_in_cooldown": sum(1 for token_id in list(self._last_alert_at) if self.in_cooldown(token_id)),
        }

"""Rate-of-change guard for market cap readings.

A reading is compared against the last *accepted* reading for the same token
address. Readings outside ``[last / ratio, last * ratio]`` are rejected and
leave the stored value untouched, so one bad sample cannot become the anchor
for the next comparison.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

import config
from utils.clock import SystemClock

logger = logging.getLogger(__name__)

# Relative slack so readings exactly on the bound survive float rounding.
_BOUND_REL_TOL = 1e-9


@dataclass(frozen=True)
class CapObservation:
    value: float
    observed_at: datetime


class MarketCapGuard:
    def __init__(self, max_change_ratio: float | None = None, clock=None) -> None:
        ratio = float(max_change_ratio if max_change_ratio is not None else config.MAX_CAP_CHANGE_RATIO)
        if ratio <= 1.0:
            raise ValueError(f"max_change_ratio must be > 1, got {ratio}")
        self.max_change_ratio = ratio
        self._clock = clock or SystemClock()
        self._last_good: dict[str, CapObservation] = {}

    def last_known(self, token_address: str) -> CapObservation | None:
        return self._last_good.get(token_address)

    def validate(self, token_address: str, new_cap: float) -> float | None:
        """Return the accepted cap, or None when the reading is rejected."""
        try:
            value = float(new_cap)
        except (TypeError, ValueError):
            logger.warning("GUARD_REJECT address=%s reason=not_numeric value=%r", token_address, new_cap)
            return None
        if not math.isfinite(value) or value <= 0:
            logger.warning("GUARD_REJECT address=%s reason=non_positive value=%s", token_address, value)
            return None

        previous = self._last_good.get(token_address)
        if previous is not None:
            upper = previous.value * self.max_change_ratio
            lower = previous.value / self.max_change_ratio
            too_high = value > upper and not math.isclose(value, upper, rel_tol=_BOUND_REL_TOL)
            too_low = value < lower and not math.isclose(value, lower, rel_tol=_BOUND_REL_TOL)
            if too_high or too_low:
                logger.warning(
                    "GUARD_REJECT address=%s reason=rate_of_change last=%.2f new=%.2f ratio=%.4f max=%.2f",
                    token_address,
                    previous.value,
                    value,
                    value / previous.value,
                    self.max_change_ratio,
                )
                return None

        self._last_good[token_address] = CapObservation(value=value, observed_at=self._clock.now())
        return value

    def prune(self, active_addresses: Iterable[str]) -> None:
        keep = set(active_addresses)
        for address in [a for a in self._last_good if a not in keep]:
            del self._last_good[address]

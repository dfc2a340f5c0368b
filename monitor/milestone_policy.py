"""Milestone crossing decisions for one group's milestone set."""

from __future__ import annotations

import math
from typing import Iterable

from monitor.models import MilestoneConfig

# Relative slack so a cap sitting exactly on a multiple survives float rounding.
_RATIO_REL_TOL = 1e-9


class MilestonePolicy:
    def __init__(self, milestones: Iterable[MilestoneConfig]) -> None:
        self._milestones = sorted(milestones, key=lambda m: float(m.milestone_value))

    @property
    def milestones(self) -> list[MilestoneConfig]:
        return list(self._milestones)

    @staticmethod
    def is_crossed(initial_cap: float, current_cap: float, milestone: MilestoneConfig) -> bool:
        """True when current/initial has reached the milestone multiple (inclusive)."""
        if initial_cap <= 0 or current_cap <= 0:
            return False
        ratio = current_cap / initial_cap
        target = float(milestone.milestone_value)
        return ratio >= target or math.isclose(ratio, target, rel_tol=_RATIO_REL_TOL)

    def all_crossed(self, initial_cap: float, current_cap: float) -> list[MilestoneConfig]:
        if initial_cap <= 0 or current_cap <= 0:
            return []
        return [m for m in self._milestones if self.is_crossed(initial_cap, current_cap, m)]

    @staticmethod
    def multiple(initial_cap: float, current_cap: float) -> float:
        if initial_cap <= 0 or current_cap <= 0:
            return 0.0
        return current_cap / initial_cap

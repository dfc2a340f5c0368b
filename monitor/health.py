"""Health classification over the provider, token source and notifier."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from monitor.polling_cycle import CycleStats
from utils.clock import SystemClock

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthStatus:
    status: str
    uptime_seconds: float
    provider: str
    stats: CycleStats
    checks: dict[str, bool]
    last_cycle_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "uptime_seconds": round(self.uptime_seconds, 3),
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
            "provider": self.provider,
            "checks": dict(self.checks),
            "stats": self.stats.to_dict(),
        }


def classify_health(results: list[bool]) -> str:
    if results and all(results):
        return HEALTHY
    if any(results):
        return DEGRADED
    return UNHEALTHY


async def _safe_check(name: str, component) -> bool:
    try:
        return bool(await component.health_check())
    except Exception as exc:
        logger.warning("HEALTH_CHECK_FAILED component=%s err=%s", name, exc)
        return False


class HealthReporter:
    def __init__(self, *, provider, token_source, notifier, orchestrator, clock=None) -> None:
        self.provider = provider
        self.token_source = token_source
        self.notifier = notifier
        self.orchestrator = orchestrator
        self.clock = clock or SystemClock()
        self.started_at = self.clock.now()
        self.last_cycle_at: datetime | None = None

    def mark_cycle_completed(self) -> None:
        self.last_cycle_at = self.clock.now()

    async def check(self) -> HealthStatus:
        provider_ok, tokens_ok, notifier_ok = await asyncio.gather(
            _safe_check("provider", self.provider),
            _safe_check("token_source", self.token_source),
            _safe_check("notifier", self.notifier),
        )
        checks = {"provider": provider_ok, "token_source": tokens_ok, "notifier": notifier_ok}
        return HealthStatus(
            status=classify_health(list(checks.values())),
            uptime_seconds=max(0.0, (self.clock.now() - self.started_at).total_seconds()),
            provider=self.provider.name(),
            stats=self.orchestrator.current_stats(),
            checks=checks,
            last_cycle_at=self.last_cycle_at,
        )

"""Shared aiohttp client for market data sources: retry/backoff, per-source limits, 429 cooldown."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import Any

import aiohttp

import config

logger = logging.getLogger(__name__)


@dataclass
class HttpResult:
    ok: bool
    status: int
    data: Any | None
    error: str = ""


@dataclass
class SourceStats:
    ok: int = 0
    fail: int = 0
    rate_limited: int = 0
    retries: int = 0
    latency_total_ms: float = 0.0
    latency_count: int = 0

    def observe_latency(self, started: float) -> None:
        self.latency_total_ms += max(0.0, (time.perf_counter() - started) * 1000.0)
        self.latency_count += 1


class ResilientHttpClient:
    def __init__(
        self,
        timeout_seconds: float,
        headers: dict[str, str] | None = None,
        source_limits: dict[str, int] | None = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=max(1.0, float(timeout_seconds)))
        self._headers = dict(headers or {})
        self._source_limits = dict(source_limits or {})
        self._session: aiohttp.ClientSession | None = None
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._stats: dict[str, SourceStats] = {}
        self._rate_windows: dict[str, deque[float]] = {}
        self._cooldown_until: dict[str, float] = {}

    async def close(self) -> None:
        session = self._session
        self._session = None
        if session is not None and not session.closed:
            await session.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=max(1, int(config.HTTP_CONNECTOR_LIMIT)))
            self._session = aiohttp.ClientSession(timeout=self._timeout, connector=connector)
        return self._session

    @staticmethod
    def _source_key(source: str) -> str:
        return str(source or "default").strip().lower() or "default"

    def _semaphore(self, key: str) -> asyncio.Semaphore:
        sem = self._semaphores.get(key)
        if sem is None:
            limit = max(1, int(self._source_limits.get(key, config.HTTP_DEFAULT_CONCURRENCY)))
            sem = asyncio.Semaphore(limit)
            self._semaphores[key] = sem
        return sem

    def _stats_row(self, key: str) -> SourceStats:
        row = self._stats.get(key)
        if row is None:
            row = SourceStats()
            self._stats[key] = row
        return row

    async def _wait_rate_slot(self, key: str) -> None:
        limit = (config.HTTP_SOURCE_RATE_LIMITS or {}).get(key)
        if not limit:
            return
        max_calls, window_seconds = limit
        window = self._rate_windows.setdefault(key, deque())
        while True:
            now = time.monotonic()
            while window and window[0] <= now - window_seconds:
                window.popleft()
            if len(window) < max_calls:
                window.append(now)
                return
            wait_for = max(0.01, (window[0] + window_seconds) - now)
            logger.debug("HTTP_RATE_WAIT source=%s wait=%.2fs", key, wait_for)
            await asyncio.sleep(wait_for)

    async def _wait_cooldown(self, key: str) -> None:
        wait_for = float(self._cooldown_until.get(key, 0.0)) - time.monotonic()
        if wait_for > 0:
            logger.debug("HTTP_COOLDOWN_WAIT source=%s wait=%.2fs", key, wait_for)
            await asyncio.sleep(wait_for)

    def _apply_cooldown(self, key: str, response: aiohttp.ClientResponse) -> None:
        try:
            retry_after = max(0.0, float((response.headers or {}).get("Retry-After", "") or 0.0))
        except ValueError:
            retry_after = 0.0
        seconds = max(float(config.HTTP_429_COOLDOWN_SECONDS), retry_after)
        until = time.monotonic() + seconds
        self._cooldown_until[key] = max(float(self._cooldown_until.get(key, 0.0)), until)

    @staticmethod
    def _compute_delay(attempt: int, status: int) -> float:
        base = float(config.HTTP_BACKOFF_BASE_SECONDS)
        cap = max(base, float(config.HTTP_BACKOFF_MAX_SECONDS))
        delay = min(cap, base * (2 ** max(0, attempt - 1)))
        if status == 429:
            delay = min(cap, delay + float(config.HTTP_RATE_LIMIT_DELAY_SECONDS))
        return max(0.01, delay + random.uniform(0.0, float(config.HTTP_JITTER_SECONDS)))

    def snapshot_stats(self, reset: bool = False) -> dict[str, dict[str, int | float]]:
        out: dict[str, dict[str, int | float]] = {}
        for source, row in self._stats.items():
            total = row.ok + row.fail
            out[source] = {
                "ok": row.ok,
                "fail": row.fail,
                "total": total,
                "rate_limited": row.rate_limited,
                "retries": row.retries,
                "error_percent": round((row.fail / total * 100.0) if total else 0.0, 2),
                "latency_avg_ms": round(row.latency_total_ms / row.latency_count, 2) if row.latency_count else 0.0,
            }
        if reset:
            self._stats = {}
        return out

    async def get_json(
        self,
        url: str,
        *,
        source: str = "default",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        max_attempts: int | None = None,
    ) -> HttpResult:
        attempts = max(1, int(max_attempts or config.HTTP_RETRY_ATTEMPTS))
        req_headers = {**self._headers, **(headers or {})}
        key = self._source_key(source)
        stats = self._stats_row(key)

        for attempt in range(1, attempts + 1):
            status = 0
            await self._wait_cooldown(key)
            await self._wait_rate_slot(key)
            async with self._semaphore(key):
                started = time.perf_counter()
                try:
                    session = await self._get_session()
                    async with session.get(url, params=params, headers=req_headers) as response:
                        stats.observe_latency(started)
                        status = int(response.status or 0)
                        if status == 200:
                            payload = await response.json(content_type=None)
                            stats.ok += 1
                            return HttpResult(ok=True, status=status, data=payload)
                        if status == 429:
                            stats.rate_limited += 1
                            self._apply_cooldown(key, response)
                        retryable = status == 429 or 500 <= status <= 599
                        if not retryable or attempt >= attempts:
                            stats.fail += 1
                            return HttpResult(ok=False, status=status, data=None, error=f"http_status_{status}")
                except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
                    stats.observe_latency(started)
                    if attempt >= attempts:
                        stats.fail += 1
                        return HttpResult(ok=False, status=status, data=None, error=f"http_error:{exc}")

            stats.retries += 1
            delay = self._compute_delay(attempt, status)
            logger.debug(
                "HTTP_RETRY source=%s attempt=%s/%s status=%s delay=%.2fs url=%s",
                key,
                attempt,
                attempts,
                status,
                delay,
                url,
            )
            await asyncio.sleep(delay)

        return HttpResult(ok=False, status=0, data=None, error="http_exhausted")

"""Market cap providers: DexScreener primary, GeckoTerminal alternative."""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Sequence

import config
from monitor.errors import ConfigurationError
from monitor.models import Token
from utils.http_client import ResilientHttpClient

logger = logging.getLogger(__name__)

_HEADERS = {
    "User-Agent": "milestone-monitor/1.0",
    "Accept": "application/json, text/plain, */*",
}


def _positive_float(value: Any) -> float | None:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(parsed) or parsed <= 0:
        return None
    return parsed


def _batches(tokens: Sequence[Token], size: int) -> Iterable[Sequence[Token]]:
    step = max(1, int(size))
    for start in range(0, len(tokens), step):
        yield tokens[start : start + step]


class MarketCapProvider:
    """Base provider: batches addresses and never raises on upstream failure."""

    provider_name = "base"
    source = "default"

    def __init__(self, http: ResilientHttpClient | None = None, batch_size: int | None = None) -> None:
        self._http = http or ResilientHttpClient(
            timeout_seconds=float(config.PROVIDER_TIMEOUT_SECONDS),
            headers=_HEADERS,
            source_limits={self.source: 4},
        )
        self.batch_size = int(batch_size or config.PROVIDER_BATCH_SIZE)

    def name(self) -> str:
        return self.provider_name

    async def close(self) -> None:
        await self._http.close()

    def runtime_stats(self, reset: bool = False) -> dict[str, dict[str, int | float]]:
        return self._http.snapshot_stats(reset=reset)

    async def _fetch_json(self, url: str, params: dict[str, Any] | None = None) -> Any | None:
        result = await self._http.get_json(
            url,
            source=self.source,
            params=params,
            max_attempts=int(config.PROVIDER_RETRIES),
        )
        if result.ok:
            return result.data
        if result.status == 429:
            logger.warning("RATE_LIMIT source=%s status=429 url=%s", self.source, url)
        else:
            logger.warning("PROVIDER_FETCH_FAILED source=%s status=%s err=%s", self.source, result.status, result.error)
        return None

    async def fetch(self, tokens: Sequence[Token]) -> dict[str, float | None]:
        caps: dict[str, float | None] = {t.token_address: None for t in tokens}
        for batch in _batches(list(tokens), self.batch_size):
            addresses = [t.token_address for t in batch]
            found = await self._fetch_batch(addresses)
            for address in addresses:
                value = found.get(address)
                if value is not None:
                    caps[address] = value
        return caps

    async def _fetch_batch(self, addresses: list[str]) -> dict[str, float]:
        raise NotImplementedError

    async def health_check(self) -> bool:
        probe = str(config.PROVIDER_HEALTH_PROBE_ADDRESS or "").strip()
        if not probe:
            return False
        try:
            caps = await self._fetch_batch([probe])
        except Exception as exc:
            logger.warning("Provider health check failed source=%s err=%s", self.source, exc)
            return False
        return caps.get(probe) is not None


class DexScreenerProvider(MarketCapProvider):
    provider_name = "DexScreener"
    source = "dexscreener"

    async def _fetch_batch(self, addresses: list[str]) -> dict[str, float]:
        url = f"{config.DEXSCREENER_API}/tokens/v1/{config.DEXSCREENER_CHAIN}/{','.join(addresses)}"
        payload = await self._fetch_json(url)
        if not isinstance(payload, list):
            return {}

        # Several pairs can share a base token; the most liquid one wins.
        best: dict[str, tuple[float, float]] = {}
        wanted = set(addresses)
        for pair in payload:
            if not isinstance(pair, dict):
                continue
            address = str((pair.get("baseToken") or {}).get("address") or "")
            if address not in wanted:
                continue
            cap = _positive_float(pair.get("fdv")) or _positive_float(pair.get("marketCap"))
            if cap is None:
                continue
            liquidity = _positive_float((pair.get("liquidity") or {}).get("usd")) or 0.0
            current = best.get(address)
            if current is None or liquidity > current[0]:
                best[address] = (liquidity, cap)
        return {address: cap for address, (_, cap) in best.items()}


class GeckoTerminalProvider(MarketCapProvider):
    provider_name = "GeckoTerminal"
    source = "geckoterminal"

    async def _fetch_batch(self, addresses: list[str]) -> dict[str, float]:
        url = f"{config.GECKOTERMINAL_API}/simple/networks/{config.GECKO_NETWORK}/token_price/{','.join(addresses)}"
        payload = await self._fetch_json(url, params={"include_market_cap": "true", "mcap_fdv_fallback": "true"})
        if not isinstance(payload, dict):
            return {}
        attributes = ((payload.get("data") or {}).get("attributes")) or {}
        raw_caps = attributes.get("market_cap_usd") or {}
        if not isinstance(raw_caps, dict):
            return {}

        # GeckoTerminal may echo addresses lowercased.
        by_lower = {str(k).lower(): v for k, v in raw_caps.items()}
        out: dict[str, float] = {}
        for address in addresses:
            raw = raw_caps.get(address, by_lower.get(address.lower()))
            value = _positive_float(raw)
            if value is not None:
                out[address] = value
        return out


PROVIDERS: dict[str, type[MarketCapProvider]] = {
    "dexscreener": DexScreenerProvider,
    "geckoterminal": GeckoTerminalProvider,
}


def create_provider(name: str | None = None) -> MarketCapProvider:
    key = str(name or config.MARKET_CAP_PROVIDER).strip().lower()
    provider_cls = PROVIDERS.get(key)
    if provider_cls is None:
        raise ConfigurationError(f"Unknown market cap provider: {key}", provider=key)
    return provider_cls()

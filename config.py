"""Application configuration."""

import os
from pathlib import Path
from typing import Dict, Tuple

from dotenv import load_dotenv


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    try:
        load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")
    except TypeError:
        # Older python-dotenv versions may not expose the `encoding` argument.
        load_dotenv(dotenv_path=dotenv_path, override=override)


# Load base environment first, then optional per-instance override env file.
_load_dotenv_safe()
_MONITOR_ENV_FILE = os.getenv("MONITOR_ENV_FILE", "").strip()
if _MONITOR_ENV_FILE:
    _monitor_env_path = Path(_MONITOR_ENV_FILE).expanduser()
    if not _monitor_env_path.is_absolute():
        _monitor_env_path = (Path.cwd() / _monitor_env_path).resolve()
    if not _monitor_env_path.exists():
        raise FileNotFoundError(f"MONITOR_ENV_FILE does not exist: {_monitor_env_path}")
    if not _monitor_env_path.is_file():
        raise IsADirectoryError(f"MONITOR_ENV_FILE is not a file: {_monitor_env_path}")
    try:
        _load_dotenv_safe(str(_monitor_env_path), override=True)
    except (OSError, UnicodeError, ValueError) as exc:
        raise RuntimeError(f"Failed to load MONITOR_ENV_FILE '{_monitor_env_path}': {exc}") from exc


def _parse_source_rate_limits(raw: str) -> Dict[str, Tuple[int, float]]:
    out: Dict[str, Tuple[int, float]] = {}
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if not item or ":" not in item:
            continue
        source_part, rate_part = item.split(":", 1)
        source = source_part.strip().lower()
        if not source or "/" not in rate_part:
            continue
        count_part, window_part = rate_part.split("/", 1)
        try:
            count = max(1, int(float(count_part.strip())))
            window_seconds = max(1.0, float(window_part.strip()))
        except ValueError:
            continue
        out[source] = (count, window_seconds)
    return out


def _optional_int(raw: str | None) -> int | None:
    value = str(raw or "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


SERVICE_NAME = "Milestone Monitor - Token Market Cap Alerts"
SERVICE_VERSION = "1.0.0"

# Polling cycle
POLL_INTERVAL_SECONDS = max(1, int(os.getenv("POLL_INTERVAL_SECONDS", "60")))
CONSECUTIVE_THRESHOLD = int(os.getenv("CONSECUTIVE_THRESHOLD", "3"))
MAX_CAP_CHANGE_RATIO = float(os.getenv("MAX_CAP_CHANGE_RATIO", "3.0"))
ALERT_COOLDOWN_SECONDS = int(os.getenv("ALERT_COOLDOWN_SECONDS", "300"))
TOKEN_LIST_LIMIT = max(1, int(os.getenv("TOKEN_LIST_LIMIT", "100")))

# Market cap providers
MARKET_CAP_PROVIDER = os.getenv("MARKET_CAP_PROVIDER", "dexscreener").strip().lower()
DEXSCREENER_API = os.getenv("DEXSCREENER_API", "https://api.dexscreener.com")
DEXSCREENER_CHAIN = os.getenv("DEXSCREENER_CHAIN", "solana").strip().lower()
GECKOTERMINAL_API = os.getenv("GECKOTERMINAL_API", "https://api.geckoterminal.com/api/v2")
GECKO_NETWORK = os.getenv("GECKO_NETWORK", "solana").strip().lower()
PROVIDER_BATCH_SIZE = max(1, min(30, int(os.getenv("PROVIDER_BATCH_SIZE", "30"))))
PROVIDER_TIMEOUT_SECONDS = max(1.0, float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "15")))
PROVIDER_RETRIES = max(1, int(os.getenv("PROVIDER_RETRIES", "2")))
PROVIDER_HEALTH_PROBE_ADDRESS = os.getenv(
    "PROVIDER_HEALTH_PROBE_ADDRESS",
    "So11111111111111111111111111111111111111112",
).strip()

# Shared HTTP client
HTTP_CONNECTOR_LIMIT = max(1, int(os.getenv("HTTP_CONNECTOR_LIMIT", "30")))
HTTP_DEFAULT_CONCURRENCY = max(1, int(os.getenv("HTTP_DEFAULT_CONCURRENCY", "4")))
HTTP_RETRY_ATTEMPTS = max(1, int(os.getenv("HTTP_RETRY_ATTEMPTS", "3")))
HTTP_BACKOFF_BASE_SECONDS = max(0.05, float(os.getenv("HTTP_BACKOFF_BASE_SECONDS", "0.50")))
HTTP_BACKOFF_MAX_SECONDS = max(0.10, float(os.getenv("HTTP_BACKOFF_MAX_SECONDS", "8.00")))
HTTP_JITTER_SECONDS = max(0.0, float(os.getenv("HTTP_JITTER_SECONDS", "0.25")))
HTTP_RATE_LIMIT_DELAY_SECONDS = max(0.0, float(os.getenv("HTTP_RATE_LIMIT_DELAY_SECONDS", "2.00")))
HTTP_429_COOLDOWN_SECONDS = max(1.0, float(os.getenv("HTTP_429_COOLDOWN_SECONDS", "60")))
HTTP_SOURCE_RATE_LIMITS = _parse_source_rate_limits(
    os.getenv(
        "HTTP_SOURCE_RATE_LIMITS",
        "dexscreener:300/60,geckoterminal:30/60",
    )
)

# Persistence
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///milestones.db")

# Telegram
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TG_CHAT_ID_FSM = os.getenv("TG_CHAT_ID_FSM", "").strip()
TG_THREAD_ID_FSM = _optional_int(os.getenv("TG_THREAD_ID_FSM"))
TG_CHAT_ID_ISSAM = os.getenv("TG_CHAT_ID_ISSAM", "").strip()
TG_THREAD_ID_ISSAM = _optional_int(os.getenv("TG_THREAD_ID_ISSAM"))
TELEGRAM_SEND_ATTEMPTS = max(1, int(os.getenv("TELEGRAM_SEND_ATTEMPTS", "3")))
TELEGRAM_RETRY_DELAY_SECONDS = max(0.0, float(os.getenv("TELEGRAM_RETRY_DELAY_SECONDS", "1.0")))

# Per-group channel routing and message headline. Keys must match monitor.models.Group values.
GROUP_SETTINGS: dict[str, dict[str, str | int | None]] = {
    "fsm": {
        "chat_id": TG_CHAT_ID_FSM,
        "thread_id": TG_THREAD_ID_FSM,
        "title": os.getenv("GROUP_TITLE_FSM", "FSM Calls"),
    },
    "issam": {
        "chat_id": TG_CHAT_ID_ISSAM,
        "thread_id": TG_THREAD_ID_ISSAM,
        "title": os.getenv("GROUP_TITLE_ISSAM", "Issam Calls"),
    },
}

# HTTP surface
WEB_HOST = os.getenv("WEB_HOST", "0.0.0.0")
WEB_PORT = int(os.getenv("WEB_PORT", os.getenv("PORT", "3000")))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
APP_LOG_FILE = os.path.join(LOG_DIR, "app.log")

KNOWN_PROVIDERS = ("dexscreener", "geckoterminal")


def validate_config() -> None:
    """Fail fast on settings the service cannot run with."""
    from monitor.errors import ConfigurationError

    if int(CONSECUTIVE_THRESHOLD) < 1:
        raise ConfigurationError("CONSECUTIVE_THRESHOLD must be a positive integer", value=CONSECUTIVE_THRESHOLD)
    if float(MAX_CAP_CHANGE_RATIO) <= 1.0:
        raise ConfigurationError("MAX_CAP_CHANGE_RATIO must be greater than 1", value=MAX_CAP_CHANGE_RATIO)
    if int(ALERT_COOLDOWN_SECONDS) < 0:
        raise ConfigurationError("ALERT_COOLDOWN_SECONDS must be non-negative", value=ALERT_COOLDOWN_SECONDS)
    if MARKET_CAP_PROVIDER not in KNOWN_PROVIDERS:
        raise ConfigurationError(
            f"MARKET_CAP_PROVIDER must be one of {', '.join(KNOWN_PROVIDERS)}",
            value=MARKET_CAP_PROVIDER,
        )
    if not TELEGRAM_BOT_TOKEN:
        raise ConfigurationError("TELEGRAM_BOT_TOKEN is not set")
    for group_name, settings in GROUP_SETTINGS.items():
        if not str(settings.get("chat_id") or "").strip():
            raise ConfigurationError(f"Telegram chat id is not set for group {group_name}", group=group_name)

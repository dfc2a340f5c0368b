"""Error taxonomy shared by the polling cycle and its adapters."""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp

E_CONFIG = "E_CONFIG"
E_DATA_SOURCE = "E_DATA_SOURCE"
E_EXTERNAL_SERVICE = "E_EXTERNAL_SERVICE"
E_NOTIFY = "E_NOTIFY"
E_NETWORK = "E_NETWORK"
E_UNEXPECTED = "E_UNEXPECTED"


class MonitorError(RuntimeError):
    """Base class for errors raised by monitor components."""

    code = E_UNEXPECTED
    retryable = True

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = dict(context)


class ConfigurationError(MonitorError):
    """Raised at startup for settings the service cannot run with."""

    code = E_CONFIG
    retryable = False


class DataSourceError(MonitorError):
    """Raised when the token/milestone/ledger store cannot be read or written."""

    code = E_DATA_SOURCE


class ExternalServiceError(MonitorError):
    code = E_EXTERNAL_SERVICE

    def __init__(self, service: str, message: str, **context: Any) -> None:
        super().__init__(f"{service}: {message}", service=service, **context)
        self.service = service


class NotificationError(ExternalServiceError):
    """Raised when a notification could not be delivered after all attempts."""

    code = E_NOTIFY


def classify_error(exc: BaseException) -> str:
    if isinstance(exc, MonitorError):
        return exc.code
    if isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return E_NETWORK
    return E_UNEXPECTED

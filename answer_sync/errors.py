"""Error taxonomy for snapshot reconciliation.

Not-ready payloads and unrecognized payload shapes are expected outcomes and
are modelled as poll/extraction states, not exceptions.
"""

from __future__ import annotations

from enum import StrEnum

import httpx


class ReconcileError(Exception):
    """Base class for reconciliation failures."""


class ConfigurationError(ReconcileError):
    """Credentials or base URLs are missing. Fatal, never retried."""


class StoreError(ReconcileError):
    def __init__(self, message: str, *, table: str, operation: str):
        super().__init__(message)
        self.table = table
        self.operation = operation


class StoreReadError(StoreError):
    """Enumerating or looking up rows failed."""


class StoreWriteFailure(StoreError):
    """A result upsert or status update did not go through."""


class ProviderErrorType(StrEnum):
    NETWORK = "network_error"
    TIMEOUT = "timeout_error"
    RATE_LIMIT = "rate_limit_error"
    UNKNOWN = "unknown_error"


def classify_provider_error(exc: BaseException) -> ProviderErrorType:
    """Label a poll that raised before any response arrived.

    HTTP status codes never reach here; the snapshot client reports every
    non-2xx response as not ready. Every label is still treated as transient.
    """
    if isinstance(exc, httpx.TimeoutException):
        return ProviderErrorType.TIMEOUT
    if isinstance(exc, httpx.TransportError):
        return ProviderErrorType.NETWORK

    message = str(exc).lower()
    if "timed out" in message or "timeout" in message:
        return ProviderErrorType.TIMEOUT
    if any(marker in message for marker in ("connection", "network", "econnreset", "econnrefused")):
        return ProviderErrorType.NETWORK
    if "rate limit" in message or "too many requests" in message:
        return ProviderErrorType.RATE_LIMIT
    return ProviderErrorType.UNKNOWN

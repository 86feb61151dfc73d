"""Dispatch-level error taxonomy for the AI Operation Gateway."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Categorized outcome returned to callers when a dispatch fails."""

    INVALID_INPUT = "InvalidInput"
    NO_PROVIDER_CONFIGURED = "NoProviderConfigured"
    ALL_PROVIDERS_FAILED = "AllProvidersFailed"


class GatewayError(Exception):
    """Base class for errors surfaced by the gateway to its callers."""

    kind: ErrorKind

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidInput(GatewayError):
    """Parameters were rejected; the same input would fail on every adapter."""

    kind = ErrorKind.INVALID_INPUT


class NoProviderConfigured(GatewayError):
    """No enabled adapter supports the requested operation."""

    kind = ErrorKind.NO_PROVIDER_CONFIGURED


class AllProvidersFailed(GatewayError):
    """Every adapter in the fallback chain failed."""

    kind = ErrorKind.ALL_PROVIDERS_FAILED

    def __init__(self, message: str, failures: list[dict[str, Any]] | None = None):
        super().__init__(message, details={"failures": failures or []})
        self.failures = failures or []

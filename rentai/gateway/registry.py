"""Provider Registry — priority-ordered adapters plus their enable/disable state.

Ordering rules:
  - Adapters are tried in ascending priority number
  - Ties keep registration order
  - Disabled adapters are excluded from the ordered list entirely
  - Zero-cost mode excludes every paid adapter

Writes (admin toggles) are guarded by a lock; readers take a snapshot, so no
lock is ever held across a dispatch.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum

from rentai.gateway.adapters import BaseProviderAdapter
from rentai.gateway.types import FailureKind, Operation

logger = logging.getLogger(__name__)


class ProviderStatus(str, Enum):
    """Last observed status of an adapter (diagnostics only)."""

    ACTIVE = "active"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass
class _Registration:
    adapter: BaseProviderAdapter
    priority: int
    order: int
    enabled: bool = True
    status: ProviderStatus = ProviderStatus.UNKNOWN
    last_error: str = ""
    last_checked: float = 0.0
    successes: int = 0
    failures: int = 0


def status_from_failure(kind: FailureKind, error_code: str = "") -> ProviderStatus:
    """Map a failure to the adapter status shown on dashboards."""
    if kind == FailureKind.UNAVAILABLE:
        return ProviderStatus.UNAVAILABLE
    if error_code == "429":
        return ProviderStatus.RATE_LIMITED
    return ProviderStatus.ERROR


class ProviderRegistry:
    """Holds every registered adapter in priority order.

    Usage:
        registry = ProviderRegistry()
        registry.register(CustomAdapter(), priority=1)
        registry.register(OpenAIAdapter(api_key="sk-..."), priority=4)

        for adapter in registry.enabled_adapters_for(Operation.GENERATE_TEXT):
            ...
    """

    def __init__(self, zero_cost_mode: bool = False):
        self.zero_cost_mode = zero_cost_mode
        self._registrations: dict[str, _Registration] = {}
        self._lock = threading.Lock()

    def register(self, adapter: BaseProviderAdapter, priority: int, enabled: bool = True) -> None:
        with self._lock:
            if adapter.name in self._registrations:
                raise ValueError(f"Adapter already registered: {adapter.name}")
            self._registrations[adapter.name] = _Registration(
                adapter=adapter,
                priority=priority,
                order=len(self._registrations),
                enabled=enabled,
            )
        logger.info("Registered AI adapter %s (priority=%d, enabled=%s)", adapter.name, priority, enabled)

    def _get(self, name: str) -> _Registration:
        try:
            return self._registrations[name]
        except KeyError:
            raise KeyError(f"Unknown AI adapter: {name}") from None

    def get(self, name: str) -> BaseProviderAdapter:
        return self._get(name).adapter

    @property
    def names(self) -> list[str]:
        return [r.adapter.name for r in self._ordered()]

    def _ordered(self) -> list[_Registration]:
        snapshot = list(self._registrations.values())
        return sorted(snapshot, key=lambda r: (r.priority, r.order))

    def _is_active(self, registration: _Registration) -> bool:
        if not registration.enabled:
            return False
        return not (self.zero_cost_mode and registration.adapter.paid)

    def is_enabled(self, name: str) -> bool:
        return self._is_active(self._get(name))

    def enabled_adapters_for(self, operation: Operation) -> list[BaseProviderAdapter]:
        """Ordered adapters that would be attempted for an operation."""
        return [
            r.adapter
            for r in self._ordered()
            if self._is_active(r) and r.adapter.supports(operation)
        ]

    # ------------------------------------------------------------------
    # Runtime configuration
    # ------------------------------------------------------------------

    def set_enabled(self, name: str, enabled: bool) -> None:
        with self._lock:
            registration = self._get(name)
            registration.enabled = enabled
        logger.info("AI adapter %s %s", name, "enabled" if enabled else "disabled")

    def set_priority(self, name: str, priority: int) -> None:
        with self._lock:
            self._get(name).priority = priority
        logger.info("AI adapter %s priority set to %d", name, priority)

    def set_zero_cost_mode(self, enabled: bool) -> None:
        with self._lock:
            self.zero_cost_mode = enabled
        logger.info("Zero-cost mode %s", "on" if enabled else "off")

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def record_outcome(self, name: str, status: ProviderStatus, error: str = "") -> None:
        with self._lock:
            registration = self._get(name)
            registration.status = status
            registration.last_error = error
            registration.last_checked = time.time()
            if status == ProviderStatus.ACTIVE:
                registration.successes += 1
            else:
                registration.failures += 1

    def describe(self) -> list[dict]:
        """Every registered adapter, in priority order, with its configuration."""
        return [
            {
                "name": r.adapter.name,
                "priority": r.priority,
                "paid": r.adapter.paid,
                "configuredEnabled": r.enabled,
                "enabled": self._is_active(r),
                "hasCredentials": r.adapter.has_credentials,
                "model": r.adapter.model,
                "capabilities": sorted(op.value for op in r.adapter.capabilities),
                "status": r.status.value,
                "lastError": r.last_error,
                "lastChecked": r.last_checked or None,
                "successes": r.successes,
                "failures": r.failures,
            }
            for r in self._ordered()
        ]

    def __len__(self) -> int:
        return len(self._registrations)

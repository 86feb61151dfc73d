"""Failure Simulator — forces named adapters to fail for one dispatch.

Used by the test/diagnostic endpoints. A simulated adapter looks exactly like
the real one to the dispatcher (same name, same capabilities) but returns a
synthetic transient failure instead of calling the backend.
"""

from __future__ import annotations

import logging

from rentai.gateway.adapters import AdapterError, BaseProviderAdapter
from rentai.gateway.types import AdapterSuccess, FailureKind, Operation, OperationParams, SimulationPolicy

logger = logging.getLogger(__name__)


class SimulatedFailureAdapter(BaseProviderAdapter):
    """Wraps a real adapter and always fails transiently."""

    # Outcomes of a simulated run say nothing about the real provider
    records_health = False

    def __init__(self, wrapped: BaseProviderAdapter):
        super().__init__(api_key=wrapped.api_key, model=wrapped.model, timeout=wrapped.timeout)
        self.wrapped = wrapped
        self.name = wrapped.name
        self.capabilities = wrapped.capabilities
        self.paid = wrapped.paid
        self.requires_api_key = wrapped.requires_api_key

    @property
    def has_credentials(self) -> bool:
        # The backend is never called
        return True

    async def _execute(self, operation: Operation, params: OperationParams) -> AdapterSuccess:
        logger.debug("Simulating failure of %s for %s", self.name, operation.value)
        raise AdapterError(FailureKind.TRANSIENT, f"Simulated failure of {self.name}", "SIMULATED")


class FailureSimulator:
    """Applies a SimulationPolicy to an ordered adapter list."""

    @staticmethod
    def apply(adapters: list[BaseProviderAdapter], policy: SimulationPolicy | None) -> list[BaseProviderAdapter]:
        if policy is None or policy.is_empty:
            return adapters
        return [
            SimulatedFailureAdapter(adapter) if policy.forces(adapter.name) else adapter
            for adapter in adapters
        ]

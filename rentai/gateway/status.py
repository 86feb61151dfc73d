"""Status Reporter — which adapters would currently serve an operation.

Derived from registry configuration only. No adapter is probed: a live check
would cost money and add latency to a dashboard refresh.
"""

from __future__ import annotations

from rentai.gateway.registry import ProviderRegistry
from rentai.gateway.types import Operation


class StatusReporter:
    def __init__(self, registry: ProviderRegistry):
        self.registry = registry

    def status_for(self, operation: Operation) -> dict[str, bool]:
        """Adapter name → True, for each adapter that would be attempted (in order)."""
        return {adapter.name: True for adapter in self.registry.enabled_adapters_for(operation)}

    def is_servable(self, operation: Operation) -> bool:
        return bool(self.registry.enabled_adapters_for(operation))

    def priority_order(self, operation: Operation) -> list[str]:
        return [adapter.name for adapter in self.registry.enabled_adapters_for(operation)]

    def summary(self) -> dict:
        """Per-operation availability for the AI system health widget."""
        operations = {}
        for operation in Operation:
            order = self.priority_order(operation)
            operations[operation.value] = {
                "servable": bool(order),
                "primary": order[0] if order else None,
                "priorityOrder": order,
            }
        return {
            "zeroCostMode": self.registry.zero_cost_mode,
            "healthy": all(op["servable"] for op in operations.values()),
            "operations": operations,
        }

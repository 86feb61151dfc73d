"""AI Operation Gateway — facade wiring registry, dispatcher, cache and status.

Entry point for everything that needs an AI operation performed:
  1. Validates the operation name and parameter bag (InvalidInput on failure)
  2. Dispatches through the priority-ordered fallback chain
  3. Returns one categorized outcome: success + servedBy, or one failure kind

Usage:
    gateway = AiGateway.from_settings(settings)

    result = await gateway.execute_operation(
        "generatePropertyDescription",
        {"propertyType": "flat", "bedrooms": 2, "bathrooms": 1, "location": "Leeds"},
    )
    # {"success": True, "value": "...", "servedBy": "custom", ...}

    value = await gateway.run("generateText", {"prompt": "..."})  # raises GatewayError
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from rentai.gateway.adapters import ADAPTER_CLASSES, BaseProviderAdapter, get_adapter
from rentai.gateway.cache import ResultCache
from rentai.gateway.dispatcher import OperationDispatcher
from rentai.gateway.errors import InvalidInput
from rentai.gateway.registry import ProviderRegistry
from rentai.gateway.status import StatusReporter
from rentai.gateway.types import (
    AdapterConfig,
    DispatchResult,
    GatewayConfig,
    Operation,
    SimulationPolicy,
    build_params,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FallbackScenario:
    """Named failure combination for the fallback test endpoint."""

    name: str
    description: str
    policy: SimulationPolicy


FALLBACK_SCENARIOS: dict[str, FallbackScenario] = {
    s.name: s
    for s in (
        FallbackScenario(
            name="normal",
            description="No simulated failures; the highest-priority enabled adapter serves",
            policy=SimulationPolicy(),
        ),
        FallbackScenario(
            name="gemini-to-openai",
            description="Gemini forced to fail; the chain continues past it in priority order",
            policy=SimulationPolicy(force_fail_adapters=frozenset({"gemini"})),
        ),
        FallbackScenario(
            name="openai-failure",
            description="OpenAI forced to fail; other adapters keep serving",
            policy=SimulationPolicy(force_fail_adapters=frozenset({"openai"})),
        ),
        FallbackScenario(
            name="all-fail",
            description="Every adapter forced to fail; expect AllProvidersFailed",
            policy=SimulationPolicy(force_fail_all=True),
        ),
    )
}

# Plain-text tenancy agreement used by the document scenarios
_SAMPLE_TENANCY_BASE64 = (
    "QVNTVVJFRCBTSE9SVEhPTEQgVEVOQU5DWSBBR1JFRU1FTlQKTGFuZGxvcmQ6IEphbmUgU21pdGgKVGVuYW50OiBUb20gQnJvd24K"
    "UHJvcGVydHk6IDEyIEh5ZGUgUGFyayBSb2FkLCBMZWVkcyBMUzYgMUFCClJlbnQ6IDY1MCBHQlAgcGVyIG1vbnRoCkRlcG9zaXQ6"
    "IDc1MCBHQlAKU3RhcnQgZGF0ZTogMDEvMDkvMjAyNQo="
)

DEFAULT_SCENARIO_PARAMS: dict[Operation, dict[str, Any]] = {
    Operation.GENERATE_TEXT: {"prompt": "Write a short welcome message for new tenants."},
    Operation.EXTRACT_DOCUMENT_INFO: {
        "document_base64": _SAMPLE_TENANCY_BASE64,
        "file_name": "tenancy.txt",
        "document_type": "tenancy_agreement",
    },
    Operation.ANALYZE_DOCUMENT: {"document_base64": _SAMPLE_TENANCY_BASE64, "file_name": "tenancy.txt"},
    Operation.GENERATE_PROPERTY_DESCRIPTION: {
        "title": "Test Property",
        "propertyType": "flat",
        "bedrooms": 2,
        "bathrooms": 1,
        "location": "Leeds",
        "university": "University of Leeds",
        "features": ["Furnished", "Bills included"],
    },
    Operation.GENERATE_RECOMMENDATIONS: {
        "preferences": {"location": "Leeds", "budget": 700},
        "properties": [
            {"id": "p1", "location": "Leeds", "price": 650, "bedrooms": 2},
            {"id": "p2", "location": "York", "price": 900, "bedrooms": 3},
        ],
        "count": 2,
    },
}


def _error_payload(operation: str, error: InvalidInput) -> dict[str, Any]:
    return {
        "success": False,
        "operation": operation,
        "errorKind": error.kind.value,
        "details": {"message": error.message, "failures": [], **error.details},
        "attempts": [],
    }


class AiGateway:
    """Main gateway facade.

    Integrates:
      - ProviderRegistry: ordered adapters and runtime toggles
      - OperationDispatcher: fallback loop with per-adapter timeout
      - ResultCache: TTL memoization for cacheable operations
      - StatusReporter: configuration-derived availability
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        adapters: list[BaseProviderAdapter] | None = None,
        cache: ResultCache | None = None,
    ):
        """
        Args:
            config: Gateway configuration (defaults: built-in priorities, no API keys)
            adapters: Explicit adapters to register instead of building them from config
            cache: Result cache override (tests inject one with a fake clock)
        """
        self.config = config or GatewayConfig()
        self.registry = ProviderRegistry(zero_cost_mode=self.config.zero_cost_mode)

        for adapter in adapters if adapters is not None else self._build_adapters():
            adapter_config = self.config.adapters.get(adapter.name, AdapterConfig(name=adapter.name))
            self.registry.register(adapter, adapter_config.priority, enabled=adapter_config.enabled)

        if cache is None:
            cache = ResultCache(
                ttl_seconds=self.config.cache_ttl_seconds,
                max_entries=self.config.cache_max_entries,
            )
        self.cache = cache
        self.dispatcher = OperationDispatcher(self.registry, self.cache, self.config)
        self.status = StatusReporter(self.registry)

    @classmethod
    def from_settings(cls, settings: Any) -> AiGateway:
        return cls(GatewayConfig.from_settings(settings))

    def _build_adapters(self) -> list[BaseProviderAdapter]:
        adapters = []
        for name, adapter_config in self.config.adapters.items():
            if name not in ADAPTER_CLASSES:
                logger.warning("Skipping unknown AI provider in configuration: %s", name)
                continue
            adapters.append(
                get_adapter(
                    name,
                    api_key=self.config.api_keys.get(name, ""),
                    model=adapter_config.model,
                    timeout=adapter_config.timeout_seconds,
                )
            )
        return adapters

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        operation_name: str,
        params: dict[str, Any] | None,
        simulation: SimulationPolicy | dict[str, Any] | None = None,
        cache_key: str | None = None,
        use_cache: bool = True,
    ) -> DispatchResult:
        """Validate and dispatch. Raises InvalidInput for bad names/params."""
        operation = Operation.parse(operation_name)
        typed_params = build_params(operation, params)
        policy = simulation if isinstance(simulation, SimulationPolicy) else SimulationPolicy.from_dict(simulation)
        return await self.dispatcher.dispatch(
            operation, typed_params, simulation=policy, cache_key=cache_key, use_cache=use_cache
        )

    async def execute_operation(
        self,
        operation_name: str,
        params: dict[str, Any] | None,
        simulation: SimulationPolicy | dict[str, Any] | None = None,
        cache_key: str | None = None,
        use_cache: bool = True,
    ) -> dict[str, Any]:
        """Always returns one categorized outcome as a JSON-ready dict."""
        try:
            result = await self.dispatch(operation_name, params, simulation, cache_key, use_cache)
        except InvalidInput as e:
            logger.info("Rejected %s request: %s", operation_name, e.message)
            return _error_payload(operation_name, e)
        return result.to_dict()

    async def run(self, operation_name: str, params: dict[str, Any] | None) -> Any:
        """Dispatch and return the value, raising a GatewayError on failure."""
        result = await self.dispatch(operation_name, params)
        return result.raise_for_error()

    async def run_scenario(
        self,
        scenario_name: str,
        operation_name: str = Operation.GENERATE_TEXT.value,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run one named fallback scenario and report the outcome with its attempt log."""
        scenario = FALLBACK_SCENARIOS.get(scenario_name)
        if scenario is None:
            raise InvalidInput(
                f"Unknown fallback scenario: {scenario_name!r}",
                {"scenarios": sorted(FALLBACK_SCENARIOS)},
            )
        operation = Operation.parse(operation_name)
        if params is None:
            params = DEFAULT_SCENARIO_PARAMS.get(operation, {})

        logger.info("Running fallback scenario %s on %s", scenario.name, operation.value)
        return {
            "scenario": scenario.name,
            "description": scenario.description,
            "simulation": {
                "forceFailAdapter": sorted(scenario.policy.force_fail_adapters),
                "forceFailAll": scenario.policy.force_fail_all,
            },
            "priorityOrder": self.status.priority_order(operation),
            # Scenario runs never read or populate the shared cache
            "result": await self.execute_operation(operation.value, params, scenario.policy, use_cache=False),
        }

    # ------------------------------------------------------------------
    # Status & administration
    # ------------------------------------------------------------------

    def get_provider_status(self, operation_name: str) -> dict[str, bool]:
        return self.status.status_for(Operation.parse(operation_name))

    def set_provider_enabled(self, name: str, enabled: bool) -> None:
        self.registry.set_enabled(name, enabled)

    def set_zero_cost_mode(self, enabled: bool) -> None:
        self.registry.set_zero_cost_mode(enabled)

    def flush_cache(self) -> int:
        return self.cache.flush()

    def describe_providers(self) -> dict[str, Any]:
        return {
            "zeroCostMode": self.registry.zero_cost_mode,
            "providers": self.registry.describe(),
        }

    def get_status(self) -> dict[str, Any]:
        """Get comprehensive gateway status."""
        return {
            **self.status.summary(),
            "cache": self.cache.get_stats(),
            "providers": self.registry.describe(),
        }

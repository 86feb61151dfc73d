"""Tests for the AI Operation Gateway.

Covers:
  - Operation types and parameter validation
  - Provider Registry (ordering, toggles, zero-cost mode)
  - Failure Simulator
  - Result Cache (fingerprints, TTL, bounded size)
  - Operation Dispatcher (fallback, invalid input, timeouts, caching)
  - Status Reporter
  - AiGateway facade and fallback scenarios
"""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from rentai.core.config import Settings
from rentai.gateway.adapters import BaseProviderAdapter, CustomAdapter
from rentai.gateway.cache import ResultCache, canonicalize, fingerprint
from rentai.gateway.errors import AllProvidersFailed, ErrorKind, InvalidInput, NoProviderConfigured
from rentai.gateway.gateway import FALLBACK_SCENARIOS, AiGateway
from rentai.gateway.registry import ProviderRegistry, ProviderStatus
from rentai.gateway.simulator import FailureSimulator, SimulatedFailureAdapter
from rentai.gateway.status import StatusReporter
from rentai.gateway.types import (
    DEFAULT_ADAPTER_CONFIGS,
    AdapterSuccess,
    FailureKind,
    GatewayConfig,
    Operation,
    RecommendationParams,
    SimulationPolicy,
    TextGenerationParams,
    build_params,
)

PROPERTY_PARAMS = {
    "title": "Bright flat",
    "propertyType": "flat",
    "bedrooms": 2,
    "bathrooms": 1,
    "location": "Leeds",
}

class MeteredAdapter(BaseProviderAdapter):
    """Paid adapter reporting fixed token usage."""

    name = "openai"

    async def _execute(self, operation, params):
        return AdapterSuccess(value="metered", model=self.model, input_tokens=12, output_tokens=30, cost_usd=0.0021)


RECOMMENDATION_PARAMS = {
    "preferences": {"location": "Leeds", "budget": 700},
    "properties": [
        {"id": "p1", "location": "Leeds", "price": 650},
        {"id": "p2", "location": "York", "price": 900},
    ],
    "count": 2,
}


# ==========================================================================
# Test: Types & parameter validation
# ==========================================================================


class TestOperationParams:
    """Test operation parsing and per-operation parameter validation."""

    def test_parse_known_operation(self):
        assert Operation.parse("generateText") == Operation.GENERATE_TEXT

    def test_parse_unknown_operation(self):
        with pytest.raises(InvalidInput) as exc_info:
            Operation.parse("summonDragon")
        assert exc_info.value.kind == ErrorKind.INVALID_INPUT
        assert exc_info.value.details["operation"] == "summonDragon"

    def test_text_requires_prompt(self):
        with pytest.raises(InvalidInput) as exc_info:
            build_params(Operation.GENERATE_TEXT, {"prompt": "   "})
        assert exc_info.value.details["field"] == "prompt"

    def test_text_response_format_aliases(self):
        params = build_params(Operation.GENERATE_TEXT, {"prompt": "hi", "responseFormat": "json_object"})
        assert isinstance(params, TextGenerationParams)
        assert params.response_format == "json"

    def test_text_rejects_unknown_response_format(self):
        with pytest.raises(InvalidInput):
            build_params(Operation.GENERATE_TEXT, {"prompt": "hi", "response_format": "xml"})

    def test_property_description_camel_case(self):
        params = build_params(
            Operation.GENERATE_PROPERTY_DESCRIPTION,
            {**PROPERTY_PARAMS, "maxLength": 200, "features": ["Garden"]},
        )
        assert params.property_type == "flat"
        assert params.max_length == 200
        assert params.features == ("Garden",)

    def test_property_description_rejects_tiny_max_length(self):
        with pytest.raises(InvalidInput):
            build_params(Operation.GENERATE_PROPERTY_DESCRIPTION, {**PROPERTY_PARAMS, "max_length": 5})

    def test_property_description_rejects_non_integer_bedrooms(self):
        with pytest.raises(InvalidInput) as exc_info:
            build_params(Operation.GENERATE_PROPERTY_DESCRIPTION, {**PROPERTY_PARAMS, "bedrooms": "two"})
        assert exc_info.value.details["field"] == "bedrooms"

    def test_document_info_strips_data_url(self):
        params = build_params(
            Operation.EXTRACT_DOCUMENT_INFO,
            {"base64File": "data:text/plain;base64,aGVsbG8="},
        )
        assert params.document_base64 == "aGVsbG8="

    def test_document_info_rejects_bad_base64(self):
        with pytest.raises(InvalidInput):
            build_params(Operation.EXTRACT_DOCUMENT_INFO, {"document_base64": "not base64!!"})

    def test_analysis_requires_document_or_text(self):
        with pytest.raises(InvalidInput):
            build_params(Operation.ANALYZE_DOCUMENT, {"analysis_type": "legal"})
        params = build_params(Operation.ANALYZE_DOCUMENT, {"text": "Tenancy agreement"})
        assert params.response_format == "json"

    def test_recommendation_count_is_capped(self):
        params = build_params(Operation.GENERATE_RECOMMENDATIONS, {**RECOMMENDATION_PARAMS, "count": 500})
        assert isinstance(params, RecommendationParams)
        assert params.count == 50

    def test_recommendations_require_property_list(self):
        with pytest.raises(InvalidInput):
            build_params(Operation.GENERATE_RECOMMENDATIONS, {"preferences": {}, "properties": "p1,p2"})

    @pytest.mark.parametrize(
        "params, field",
        [
            ({"preferences": {"mustHaveFeatures": 3}, "properties": []}, "preferences.mustHaveFeatures"),
            ({"preferences": {"budget": "cheap"}, "properties": []}, "preferences.budget"),
            ({"preferences": {}, "properties": [{"id": "p1"}, {"id": "p2", "price": "650"}]}, "properties[1].price"),
            ({"preferences": {}, "properties": [{"id": "p1", "features": "Garden"}]}, "properties[0].features"),
            ({"preferences": {"budget": float("nan")}, "properties": []}, "preferences.budget"),
        ],
    )
    def test_recommendation_scoring_fields_are_type_checked(self, params, field):
        with pytest.raises(InvalidInput) as exc_info:
            build_params(Operation.GENERATE_RECOMMENDATIONS, params)
        assert exc_info.value.details["field"] == field

    @pytest.mark.parametrize("count", [float("inf"), float("-inf"), float("nan"), 2.5, True, "3"])
    def test_count_must_be_finite_integer(self, count):
        with pytest.raises(InvalidInput) as exc_info:
            build_params(Operation.GENERATE_RECOMMENDATIONS, {**RECOMMENDATION_PARAMS, "count": count})
        assert exc_info.value.details["field"] == "count"

    def test_params_must_be_object(self):
        with pytest.raises(InvalidInput):
            build_params(Operation.GENERATE_TEXT, ["prompt"])


class TestSimulationPolicy:
    def test_empty(self):
        assert SimulationPolicy.from_dict(None).is_empty
        assert SimulationPolicy.from_dict({}).is_empty

    def test_force_fail_adapter_list(self):
        policy = SimulationPolicy.from_dict({"forceFailAdapter": ["Gemini", "openai"]})
        assert policy.force_fail_adapters == frozenset({"gemini", "openai"})
        assert policy.forces("gemini")
        assert not policy.forces("custom")

    def test_force_fail_adapter_string(self):
        policy = SimulationPolicy.from_dict({"force_fail_adapter": "deepseek"})
        assert policy.force_fail_adapters == frozenset({"deepseek"})

    def test_legacy_flags(self):
        policy = SimulationPolicy.from_dict({"forceFailGemini": True, "forceFailOpenAI": False})
        assert policy.force_fail_adapters == frozenset({"gemini"})

    def test_force_fail_all(self):
        policy = SimulationPolicy.from_dict({"forceFailAll": True})
        assert policy.forces("anything")
        assert not policy.is_empty

    def test_invalid_adapter_list(self):
        with pytest.raises(InvalidInput):
            SimulationPolicy.from_dict({"forceFailAdapter": 42})


class TestGatewayConfig:
    def test_default_priorities(self):
        order = sorted(DEFAULT_ADAPTER_CONFIGS.values(), key=lambda c: c.priority)
        assert [c.name for c in order] == ["custom", "deepseek", "gemini", "openai"]

    def test_only_recommendations_cacheable_by_default(self):
        config = GatewayConfig()
        assert config.is_cacheable(Operation.GENERATE_RECOMMENDATIONS)
        assert not config.is_cacheable(Operation.GENERATE_TEXT)

    def test_timeout_is_bounded_by_global_timeout(self):
        config = GatewayConfig(adapter_timeout_seconds=20.0)
        assert config.timeout_for("custom") == 10.0
        assert config.timeout_for("deepseek") == 20.0
        assert config.timeout_for("unknown") == 20.0

    def test_from_settings(self):
        settings = Settings(
            openai_api_key="sk-test",
            ai_provider_priorities="openai:1,custom:2,gemini:3,deepseek:4",
            ai_enabled_providers="custom,openai",
            ai_zero_cost_mode=False,
            ai_cacheable_operations="generateRecommendations,generateText",
            ai_cache_ttl_seconds=60,
        )
        config = GatewayConfig.from_settings(settings)
        assert config.adapters["openai"].priority == 1
        assert config.adapters["custom"].priority == 2
        assert config.adapters["openai"].enabled
        assert not config.adapters["deepseek"].enabled
        assert config.api_keys["openai"] == "sk-test"
        assert config.cache_ttl_seconds == 60
        assert config.is_cacheable(Operation.GENERATE_TEXT)
        assert not config.zero_cost_mode

    def test_from_settings_rejects_unknown_cacheable_operation(self):
        settings = Settings(ai_cacheable_operations="generateMagic")
        with pytest.raises(ValueError):
            GatewayConfig.from_settings(settings)


# ==========================================================================
# Test: Provider Registry
# ==========================================================================


class TestProviderRegistry:
    """Test priority ordering and runtime configuration."""

    def test_ascending_priority(self, make_adapter):
        registry = ProviderRegistry()
        registry.register(make_adapter("openai"), priority=4)
        registry.register(make_adapter("custom", paid=False), priority=1)
        registry.register(make_adapter("gemini"), priority=3)
        names = [a.name for a in registry.enabled_adapters_for(Operation.GENERATE_TEXT)]
        assert names == ["custom", "gemini", "openai"]

    def test_ties_keep_registration_order(self, make_adapter):
        registry = ProviderRegistry()
        registry.register(make_adapter("b"), priority=1)
        registry.register(make_adapter("a"), priority=1)
        assert [a.name for a in registry.enabled_adapters_for(Operation.GENERATE_TEXT)] == ["b", "a"]

    def test_disabled_adapter_excluded(self, make_adapter):
        registry = ProviderRegistry()
        registry.register(make_adapter("custom", paid=False), priority=1)
        registry.register(make_adapter("openai"), priority=2, enabled=False)
        assert [a.name for a in registry.enabled_adapters_for(Operation.GENERATE_TEXT)] == ["custom"]

        registry.set_enabled("openai", True)
        assert [a.name for a in registry.enabled_adapters_for(Operation.GENERATE_TEXT)] == ["custom", "openai"]

    def test_zero_cost_mode_excludes_paid(self, make_adapter):
        registry = ProviderRegistry(zero_cost_mode=True)
        registry.register(make_adapter("custom", paid=False), priority=1)
        registry.register(make_adapter("gemini"), priority=2)
        assert [a.name for a in registry.enabled_adapters_for(Operation.GENERATE_TEXT)] == ["custom"]
        assert not registry.is_enabled("gemini")

        registry.set_zero_cost_mode(False)
        assert registry.is_enabled("gemini")

    def test_capability_filter(self, make_adapter):
        registry = ProviderRegistry()
        registry.register(make_adapter("deepseek", capabilities=frozenset({Operation.GENERATE_TEXT})), priority=1)
        registry.register(make_adapter("gemini"), priority=2)
        names = [a.name for a in registry.enabled_adapters_for(Operation.ANALYZE_DOCUMENT)]
        assert names == ["gemini"]

    def test_unknown_adapter_raises_key_error(self):
        registry = ProviderRegistry()
        with pytest.raises(KeyError):
            registry.set_enabled("nope", False)

    def test_duplicate_registration(self, make_adapter):
        registry = ProviderRegistry()
        registry.register(make_adapter("custom"), priority=1)
        with pytest.raises(ValueError):
            registry.register(make_adapter("custom"), priority=2)

    def test_set_priority_reorders(self, make_adapter):
        registry = ProviderRegistry()
        registry.register(make_adapter("custom"), priority=1)
        registry.register(make_adapter("openai"), priority=2)
        registry.set_priority("openai", 0)
        assert registry.names == ["openai", "custom"]

    def test_describe_and_record_outcome(self, make_adapter):
        registry = ProviderRegistry(zero_cost_mode=True)
        registry.register(make_adapter("custom", paid=False), priority=1)
        registry.register(make_adapter("openai"), priority=2)
        registry.record_outcome("openai", ProviderStatus.RATE_LIMITED, "429")
        registry.record_outcome("custom", ProviderStatus.ACTIVE)

        described = {p["name"]: p for p in registry.describe()}
        assert described["custom"]["enabled"] is True
        assert described["custom"]["status"] == "active"
        assert described["custom"]["successes"] == 1
        assert described["openai"]["configuredEnabled"] is True
        assert described["openai"]["enabled"] is False
        assert described["openai"]["status"] == "rate_limited"
        assert described["openai"]["lastError"] == "429"
        assert described["openai"]["failures"] == 1


# ==========================================================================
# Test: Failure Simulator
# ==========================================================================


class TestFailureSimulator:
    def test_empty_policy_returns_same_list(self, make_adapter):
        adapters = [make_adapter("custom"), make_adapter("openai")]
        assert FailureSimulator.apply(adapters, SimulationPolicy()) is adapters
        assert FailureSimulator.apply(adapters, None) is adapters

    def test_wraps_only_named_adapters(self, make_adapter):
        adapters = [make_adapter("custom"), make_adapter("gemini"), make_adapter("openai")]
        result = FailureSimulator.apply(adapters, SimulationPolicy(force_fail_adapters=frozenset({"gemini"})))
        assert [a.name for a in result] == ["custom", "gemini", "openai"]
        assert isinstance(result[1], SimulatedFailureAdapter)
        assert result[0] is adapters[0]
        assert result[2] is adapters[2]

    @pytest.mark.asyncio
    async def test_simulated_failure_is_transient_and_skips_backend(self, make_adapter):
        real = make_adapter("gemini")
        simulated = FailureSimulator.apply([real], SimulationPolicy(force_fail_all=True))[0]
        params = build_params(Operation.GENERATE_TEXT, {"prompt": "hi"})
        result = await simulated.invoke(Operation.GENERATE_TEXT, params)
        assert result.kind == FailureKind.TRANSIENT
        assert result.error_code == "SIMULATED"
        assert real.calls == []

    @pytest.mark.asyncio
    async def test_simulated_adapter_mirrors_wrapped_adapter(self, make_adapter):
        real = make_adapter("deepseek", capabilities=frozenset({Operation.GENERATE_TEXT}))
        real.api_key = ""
        simulated = SimulatedFailureAdapter(real)
        assert simulated.name == "deepseek"
        assert simulated.model == "deepseek-fake"
        assert simulated.timeout == real.timeout
        assert simulated.records_health is False
        assert real.records_health is True

        params = build_params(Operation.GENERATE_TEXT, {"prompt": "hi"})
        result = await simulated.invoke(Operation.GENERATE_TEXT, params)
        assert result.error_code == "SIMULATED"

        doc = build_params(Operation.ANALYZE_DOCUMENT, {"text": "Tenancy"})
        result = await simulated.invoke(Operation.ANALYZE_DOCUMENT, doc)
        assert result.error_code == "UNSUPPORTED"


# ==========================================================================
# Test: Result Cache
# ==========================================================================


class TestResultCache:
    """Test fingerprints, TTL expiry and bounded size."""

    def test_fingerprint_ignores_key_order(self):
        a = fingerprint(Operation.GENERATE_RECOMMENDATIONS, {"preferences": {"a": 1, "b": 2}, "count": 3})
        b = fingerprint(Operation.GENERATE_RECOMMENDATIONS, {"count": 3, "preferences": {"b": 2, "a": 1}})
        assert a == b

    def test_fingerprint_normalizes_values(self):
        a = fingerprint(Operation.GENERATE_TEXT, {"prompt": " hello ", "max_tokens": 100.0})
        b = fingerprint(Operation.GENERATE_TEXT, {"prompt": "hello", "max_tokens": 100})
        assert a == b

    def test_fingerprint_distinguishes_operations_and_values(self):
        base = fingerprint(Operation.GENERATE_TEXT, {"prompt": "hello"})
        assert base != fingerprint(Operation.GENERATE_TEXT, {"prompt": "goodbye"})
        assert base != fingerprint(Operation.ANALYZE_DOCUMENT, {"prompt": "hello"})

    def test_fingerprint_accepts_typed_params(self):
        params = build_params(Operation.GENERATE_RECOMMENDATIONS, RECOMMENDATION_PARAMS)
        assert len(fingerprint(Operation.GENERATE_RECOMMENDATIONS, params)) == 64

    def test_canonicalize(self):
        assert canonicalize({"b": (1, 2.0), "a": {" x "}}) == {"b": [1, 2], "a": ["x"]}
        assert canonicalize(True) is True

    def test_put_get(self, clock):
        cache = ResultCache(clock=clock)
        assert cache.get("k") is None
        cache.put("k", {"v": 1}, served_by="custom")
        entry = cache.get("k")
        assert entry.value == {"v": 1}
        assert entry.served_by == "custom"
        assert cache.get_stats()["hits"] == 1
        assert cache.get_stats()["misses"] == 1

    def test_expiry(self, clock):
        cache = ResultCache(ttl_seconds=300, clock=clock)
        cache.put("k", "v")
        clock.advance(299)
        assert cache.get("k") is not None
        clock.advance(1)
        assert cache.get("k") is None
        assert len(cache) == 0  # lazily evicted

    def test_per_entry_ttl(self, clock):
        cache = ResultCache(ttl_seconds=300, clock=clock)
        cache.put("short", "v", ttl=10)
        clock.advance(10)
        assert cache.get("short") is None

    def test_put_supersedes_entry(self, clock):
        cache = ResultCache(clock=clock)
        cache.put("k", "old")
        cache.put("k", "new")
        assert cache.get("k").value == "new"
        assert len(cache) == 1

    def test_evicts_oldest_when_full(self, clock):
        cache = ResultCache(max_entries=2, clock=clock)
        cache.put("a", 1)
        clock.advance(1)
        cache.put("b", 2)
        clock.advance(1)
        cache.put("c", 3)
        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("b").value == 2
        assert cache.get("c").value == 3

    def test_purges_expired_before_oldest(self, clock):
        cache = ResultCache(max_entries=2, clock=clock)
        cache.put("a", 1)
        cache.put("short", 2, ttl=1)
        clock.advance(1)
        cache.put("c", 3)
        assert cache.get("a").value == 1
        assert cache.get("c").value == 3
        assert cache.get("short") is None

    def test_flush_and_invalidate(self, clock):
        cache = ResultCache(clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        assert cache.flush() == 1
        assert len(cache) == 0


# ==========================================================================
# Test: Operation Dispatcher
# ==========================================================================


class TestOperationDispatcher:
    """Test the fallback loop through the gateway facade."""

    @pytest.mark.asyncio
    async def test_highest_priority_serves(self, gateway, fake_adapters):
        result = await gateway.execute_operation("generateText", {"prompt": "hi"})
        assert result["success"] is True
        assert result["servedBy"] == "custom"
        assert result["value"] == "from custom"
        assert result["cached"] is False
        assert len(result["attempts"]) == 1
        assert fake_adapters[1].calls == []

    @pytest.mark.asyncio
    async def test_forced_failure_falls_back_to_next(self, gateway):
        for operation, params in (
            ("generateText", {"prompt": "hi"}),
            ("generatePropertyDescription", PROPERTY_PARAMS),
            ("analyzeDocument", {"text": "Tenancy agreement"}),
        ):
            result = await gateway.execute_operation(operation, params, {"forceFailAdapter": ["custom"]})
            assert result["success"] is True
            assert result["servedBy"] == "deepseek"
            assert [(a["adapter"], a["outcome"]) for a in result["attempts"]] == [
                ("custom", "failure"),
                ("deepseek", "success"),
            ]
            assert result["attempts"][0]["errorKind"] == "transient"

    @pytest.mark.asyncio
    async def test_force_fail_all(self, gateway):
        result = await gateway.execute_operation("generateText", {"prompt": "hi"}, {"forceFailAll": True})
        assert result["success"] is False
        assert result["errorKind"] == "AllProvidersFailed"
        failures = result["details"]["failures"]
        assert [f["adapter"] for f in failures] == ["custom", "deepseek", "gemini", "openai"]
        assert all(f["errorKind"] == "transient" for f in failures)

    @pytest.mark.asyncio
    async def test_invalid_input_stops_chain(self, make_adapter):
        adapters = [
            make_adapter("custom", paid=False, failure=FailureKind.INVALID_INPUT),
            make_adapter("gemini"),
            make_adapter("openai"),
        ]
        gateway = AiGateway(GatewayConfig(), adapters=adapters)
        result = await gateway.execute_operation("generateText", {"prompt": "hi"})
        assert result["success"] is False
        assert result["errorKind"] == "InvalidInput"
        assert len(result["attempts"]) == 1
        assert adapters[1].calls == []
        assert adapters[2].calls == []

    @pytest.mark.asyncio
    async def test_unavailable_and_transient_fall_through(self, make_adapter):
        adapters = [
            make_adapter("custom", paid=False, failure=FailureKind.UNAVAILABLE),
            make_adapter("deepseek", failure=FailureKind.TRANSIENT),
            make_adapter("gemini", value="gemini answer"),
        ]
        gateway = AiGateway(GatewayConfig(), adapters=adapters)
        result = await gateway.execute_operation("generateText", {"prompt": "hi"})
        assert result["servedBy"] == "gemini"
        assert [a["errorKind"] for a in result["attempts"]] == ["unavailable", "transient", None]

    @pytest.mark.asyncio
    async def test_each_adapter_tried_once(self, make_adapter):
        adapters = [make_adapter("custom", failure=FailureKind.TRANSIENT), make_adapter("openai", failure=FailureKind.TRANSIENT)]
        gateway = AiGateway(GatewayConfig(), adapters=adapters)
        await gateway.execute_operation("generateText", {"prompt": "hi"})
        assert len(adapters[0].calls) == 1
        assert len(adapters[1].calls) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, make_adapter):
        adapters = [make_adapter("custom", paid=False, delay=1.0), make_adapter("openai", value="fast")]
        gateway = AiGateway(GatewayConfig(adapter_timeout_seconds=0.05), adapters=adapters)
        result = await gateway.execute_operation("generateText", {"prompt": "hi"})
        assert result["servedBy"] == "openai"
        assert result["attempts"][0]["errorCode"] == "TIMEOUT"
        assert result["attempts"][0]["errorKind"] == "transient"

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_transient(self, make_adapter):
        adapters = [make_adapter("custom", exception=RuntimeError("boom")), make_adapter("openai", value="ok")]
        gateway = AiGateway(GatewayConfig(), adapters=adapters)
        result = await gateway.execute_operation("generateText", {"prompt": "hi"})
        assert result["servedBy"] == "openai"
        assert result["attempts"][0]["errorCode"] == "EXCEPTION"
        assert "boom" in result["attempts"][0]["error"]

    @pytest.mark.asyncio
    async def test_no_provider_configured(self, gateway):
        for name in ("custom", "deepseek", "gemini", "openai"):
            gateway.set_provider_enabled(name, False)
        result = await gateway.execute_operation("generateText", {"prompt": "hi"})
        assert result["success"] is False
        assert result["errorKind"] == "NoProviderConfigured"
        assert result["attempts"] == []

    @pytest.mark.asyncio
    async def test_unsupported_operation_has_no_provider(self, make_adapter):
        adapters = [make_adapter("deepseek", capabilities=frozenset({Operation.GENERATE_TEXT}))]
        gateway = AiGateway(GatewayConfig(), adapters=adapters)
        result = await gateway.execute_operation("analyzeDocument", {"text": "Tenancy"})
        assert result["errorKind"] == "NoProviderConfigured"

    @pytest.mark.asyncio
    async def test_outcomes_update_registry_but_simulations_do_not(self, gateway):
        await gateway.execute_operation("generateText", {"prompt": "hi"}, {"forceFailAll": True})
        statuses = {p["name"]: p["status"] for p in gateway.describe_providers()["providers"]}
        assert set(statuses.values()) == {"unknown"}

        await gateway.execute_operation("generateText", {"prompt": "hi"})
        statuses = {p["name"]: p["status"] for p in gateway.describe_providers()["providers"]}
        assert statuses["custom"] == "active"

    @pytest.mark.asyncio
    async def test_real_failure_recorded_as_error(self, make_adapter):
        adapters = [make_adapter("custom", failure=FailureKind.TRANSIENT), make_adapter("openai")]
        gateway = AiGateway(GatewayConfig(), adapters=adapters)
        await gateway.execute_operation("generateText", {"prompt": "hi"})
        described = {p["name"]: p for p in gateway.describe_providers()["providers"]}
        assert described["custom"]["status"] == "error"
        assert described["custom"]["lastError"] == "custom failed"

    @pytest.mark.asyncio
    async def test_adapters_opting_out_of_health_are_not_recorded(self, make_adapter):
        quiet = make_adapter("custom", failure=FailureKind.TRANSIENT)
        quiet.records_health = False
        gateway = AiGateway(GatewayConfig(), adapters=[quiet, make_adapter("openai")])
        await gateway.execute_operation("generateText", {"prompt": "hi"})
        described = {p["name"]: p for p in gateway.describe_providers()["providers"]}
        assert described["custom"]["status"] == "unknown"
        assert described["openai"]["status"] == "active"

    @pytest.mark.asyncio
    async def test_success_attempt_carries_usage(self):
        gateway = AiGateway(GatewayConfig(), adapters=[MeteredAdapter(api_key="test-key")])
        result = await gateway.execute_operation("generateText", {"prompt": "hi"})
        attempt = result["attempts"][0]
        assert attempt["inputTokens"] == 12
        assert attempt["outputTokens"] == 30
        assert attempt["costUsd"] == 0.0021

        tokens = REGISTRY.get_sample_value("ai_tokens_total", {"adapter": "openai", "direction": "output"})
        assert tokens is not None and tokens >= 30


class TestDispatcherCaching:
    """Cacheable operations consult the Result Cache before dispatch."""

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, gateway, fake_adapters):
        first = await gateway.execute_operation("generateRecommendations", RECOMMENDATION_PARAMS)
        second = await gateway.execute_operation("generateRecommendations", RECOMMENDATION_PARAMS)
        assert first["cached"] is False
        assert second["cached"] is True
        assert second["value"] == first["value"]
        assert second["servedBy"] == "custom"
        assert second["attempts"] == [
            {
                "adapter": "custom",
                "operation": "generateRecommendations",
                "outcome": "cache_hit",
                "latencyMs": 0,
                "errorKind": None,
                "error": "",
                "errorCode": "",
                "inputTokens": 0,
                "outputTokens": 0,
                "costUsd": 0.0,
            }
        ]
        assert len(fake_adapters[0].calls) == 1

    @pytest.mark.asyncio
    async def test_canonicalized_params_share_entry(self, gateway, fake_adapters):
        reordered = {
            "count": 2,
            "properties": RECOMMENDATION_PARAMS["properties"],
            "preferences": {"budget": 700.0, "location": "Leeds"},
        }
        await gateway.execute_operation("generateRecommendations", RECOMMENDATION_PARAMS)
        second = await gateway.execute_operation("generateRecommendations", reordered)
        assert second["cached"] is True
        assert len(fake_adapters[0].calls) == 1

    @pytest.mark.asyncio
    async def test_expired_entry_reinvokes_chain(self, gateway, fake_adapters, clock):
        await gateway.execute_operation("generateRecommendations", RECOMMENDATION_PARAMS)
        clock.advance(300)
        result = await gateway.execute_operation("generateRecommendations", RECOMMENDATION_PARAMS)
        assert result["cached"] is False
        assert len(fake_adapters[0].calls) == 2

    @pytest.mark.asyncio
    async def test_non_cacheable_operation_bypasses_cache(self, gateway, fake_adapters):
        await gateway.execute_operation("generateText", {"prompt": "hi"})
        await gateway.execute_operation("generateText", {"prompt": "hi"})
        assert len(fake_adapters[0].calls) == 2
        assert len(gateway.cache) == 0

    @pytest.mark.asyncio
    async def test_cache_key_override(self, gateway, fake_adapters):
        other = {**RECOMMENDATION_PARAMS, "count": 1}
        await gateway.execute_operation("generateRecommendations", RECOMMENDATION_PARAMS, cache_key="user-42")
        result = await gateway.execute_operation("generateRecommendations", other, cache_key="user-42")
        assert result["cached"] is True

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, gateway):
        result = await gateway.execute_operation(
            "generateRecommendations", RECOMMENDATION_PARAMS, {"forceFailAll": True}
        )
        assert result["success"] is False
        assert len(gateway.cache) == 0

    @pytest.mark.asyncio
    async def test_flush_cache(self, gateway, fake_adapters):
        await gateway.execute_operation("generateRecommendations", RECOMMENDATION_PARAMS)
        assert gateway.flush_cache() == 1
        await gateway.execute_operation("generateRecommendations", RECOMMENDATION_PARAMS)
        assert len(fake_adapters[0].calls) == 2


# ==========================================================================
# Test: Status Reporter
# ==========================================================================


class TestStatusReporter:
    def test_status_for_lists_adapters_in_order(self, gateway):
        status = gateway.get_provider_status("generateText")
        assert status == {"custom": True, "deepseek": True, "gemini": True, "openai": True}
        assert list(status) == ["custom", "deepseek", "gemini", "openai"]

    @pytest.mark.asyncio
    async def test_disabling_adapter_takes_effect_without_restart(self, gateway, fake_adapters):
        gateway.set_provider_enabled("custom", False)
        assert "custom" not in gateway.get_provider_status("generateText")
        result = await gateway.execute_operation("generateText", {"prompt": "hi"})
        assert result["servedBy"] == "deepseek"
        assert fake_adapters[0].calls == []

    def test_zero_cost_mode(self, gateway):
        gateway.set_zero_cost_mode(True)
        assert gateway.get_provider_status("generateText") == {"custom": True}

    def test_unknown_operation(self, gateway):
        with pytest.raises(InvalidInput):
            gateway.get_provider_status("teleport")

    def test_is_servable_and_summary(self, make_adapter):
        registry = ProviderRegistry()
        registry.register(make_adapter("deepseek", capabilities=frozenset({Operation.GENERATE_TEXT})), priority=1)
        reporter = StatusReporter(registry)
        assert reporter.is_servable(Operation.GENERATE_TEXT)
        assert not reporter.is_servable(Operation.ANALYZE_DOCUMENT)

        summary = reporter.summary()
        assert summary["healthy"] is False
        assert summary["operations"]["generateText"]["primary"] == "deepseek"
        assert summary["operations"]["analyzeDocument"]["priorityOrder"] == []


# ==========================================================================
# Test: AiGateway facade & scenarios
# ==========================================================================


class TestAiGateway:
    @pytest.mark.asyncio
    async def test_unknown_operation_is_invalid_input(self, gateway):
        result = await gateway.execute_operation("teleport", {})
        assert result["success"] is False
        assert result["errorKind"] == "InvalidInput"
        assert result["attempts"] == []

    @pytest.mark.asyncio
    async def test_invalid_params_never_reach_adapters(self, gateway, fake_adapters):
        result = await gateway.execute_operation("generatePropertyDescription", {"location": "Leeds"})
        assert result["errorKind"] == "InvalidInput"
        assert result["details"]["field"] == "property_type"
        assert all(a.calls == [] for a in fake_adapters)

    @pytest.mark.asyncio
    async def test_mistyped_recommendation_inputs_never_reach_adapters(self, gateway, fake_adapters):
        for params in (
            {"preferences": {"mustHaveFeatures": 3}, "properties": [{"id": "p1"}]},
            {**RECOMMENDATION_PARAMS, "count": float("inf")},
            {**RECOMMENDATION_PARAMS, "count": float("nan")},
        ):
            result = await gateway.execute_operation("generateRecommendations", params)
            assert result["success"] is False
            assert result["errorKind"] == "InvalidInput"
        assert all(a.calls == [] for a in fake_adapters)

    @pytest.mark.asyncio
    async def test_image_extraction_falls_back_to_vision_adapter(self, make_adapter):
        extracted = {"documentType": "passport", "extractedInfo": {"name": "Tom Brown"}, "confidence": 0.9}
        adapters = [CustomAdapter(), make_adapter("gemini", value=extracted)]
        gateway = AiGateway(GatewayConfig(), adapters=adapters)
        result = await gateway.execute_operation(
            "extractDocumentInfo", {"document_base64": "iVBORw0KGgo=", "file_name": "passport.png"}
        )
        assert result["success"] is True
        assert result["servedBy"] == "gemini"
        assert result["value"] == extracted
        assert result["attempts"][0]["adapter"] == "custom"
        assert result["attempts"][0]["errorKind"] == "unavailable"
        assert result["attempts"][0]["errorCode"] == "UNREADABLE"

    @pytest.mark.asyncio
    async def test_injected_empty_cache_is_used(self, fake_adapters, clock):
        cache = ResultCache(ttl_seconds=60, max_entries=10, clock=clock)
        assert len(cache) == 0
        gateway = AiGateway(GatewayConfig(), adapters=fake_adapters, cache=cache)
        assert gateway.cache is cache
        assert gateway.dispatcher.cache is cache

        await gateway.execute_operation("generateRecommendations", RECOMMENDATION_PARAMS)
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_run_returns_value(self, gateway):
        assert await gateway.run("generateText", {"prompt": "hi"}) == "from custom"

    @pytest.mark.asyncio
    async def test_run_raises_categorized_errors(self, gateway, make_adapter):
        for name in ("custom", "deepseek", "gemini", "openai"):
            gateway.set_provider_enabled(name, False)
        with pytest.raises(NoProviderConfigured):
            await gateway.run("generateText", {"prompt": "hi"})

        failing = AiGateway(GatewayConfig(), adapters=[make_adapter("custom", failure=FailureKind.TRANSIENT)])
        with pytest.raises(AllProvidersFailed) as exc_info:
            await failing.run("generateText", {"prompt": "hi"})
        assert exc_info.value.failures[0]["adapter"] == "custom"

    @pytest.mark.asyncio
    async def test_gemini_to_openai_scenario(self, make_adapter):
        adapters = [
            make_adapter("custom", paid=False, failure=FailureKind.UNAVAILABLE),
            make_adapter("gemini"),
            make_adapter("openai", value="openai answer"),
        ]
        gateway = AiGateway(GatewayConfig(), adapters=adapters)
        report = await gateway.run_scenario("gemini-to-openai", "generateText")
        result = report["result"]
        assert report["priorityOrder"] == ["custom", "gemini", "openai"]
        assert report["simulation"]["forceFailAdapter"] == ["gemini"]
        assert result["servedBy"] == "openai"
        assert [(a["adapter"], a["outcome"]) for a in result["attempts"]] == [
            ("custom", "failure"),
            ("gemini", "failure"),
            ("openai", "success"),
        ]
        assert adapters[1].calls == []

    @pytest.mark.asyncio
    async def test_all_fail_scenario_with_no_adapters(self, gateway):
        for name in ("custom", "deepseek", "gemini", "openai"):
            gateway.set_provider_enabled(name, False)
        report = await gateway.run_scenario("all-fail", "generateText")
        assert report["result"]["errorKind"] == "NoProviderConfigured"
        assert report["result"]["attempts"] == []

    @pytest.mark.asyncio
    async def test_all_fail_scenario(self, gateway):
        report = await gateway.run_scenario("all-fail")
        assert report["result"]["errorKind"] == "AllProvidersFailed"
        assert len(report["result"]["details"]["failures"]) == 4

    @pytest.mark.asyncio
    async def test_scenarios_bypass_cache(self, gateway):
        report = await gateway.run_scenario("normal", "generateRecommendations")
        assert report["result"]["success"] is True
        assert len(gateway.cache) == 0

    @pytest.mark.asyncio
    async def test_every_scenario_has_default_params(self, gateway):
        for scenario in FALLBACK_SCENARIOS:
            for operation in Operation:
                report = await gateway.run_scenario(scenario, operation.value)
                assert report["result"].get("errorKind") != "InvalidInput"

    @pytest.mark.asyncio
    async def test_unknown_scenario(self, gateway):
        with pytest.raises(InvalidInput):
            await gateway.run_scenario("chaos-monkey")

    def test_get_status(self, gateway):
        status = gateway.get_status()
        assert status["zeroCostMode"] is False
        assert status["healthy"] is True
        assert status["cache"]["entries"] == 0
        assert [p["name"] for p in status["providers"]] == ["custom", "deepseek", "gemini", "openai"]


class TestBuiltinGateway:
    """Gateway built from settings, as deployed (zero-cost mode, no API keys)."""

    def test_registry_from_settings(self, builtin_gateway):
        assert builtin_gateway.registry.names == ["custom", "deepseek", "gemini", "openai"]
        assert builtin_gateway.get_provider_status("generateText") == {"custom": True}

    @pytest.mark.asyncio
    async def test_custom_engine_serves(self, builtin_gateway):
        result = await builtin_gateway.execute_operation("generatePropertyDescription", PROPERTY_PARAMS)
        assert result["success"] is True
        assert result["servedBy"] == "custom"
        assert "Leeds" in result["value"]

    @pytest.mark.asyncio
    async def test_paid_adapters_without_keys_are_unavailable(self, builtin_gateway):
        builtin_gateway.set_zero_cost_mode(False)
        result = await builtin_gateway.execute_operation(
            "generateText", {"prompt": "hi"}, {"forceFailAdapter": ["custom"]}
        )
        assert result["errorKind"] == "AllProvidersFailed"
        failures = result["details"]["failures"]
        assert [f["adapter"] for f in failures] == ["custom", "deepseek", "gemini", "openai"]
        assert [f["errorCode"] for f in failures[1:]] == ["NO_API_KEY"] * 3
        assert all(f["errorKind"] == "unavailable" for f in failures[1:])

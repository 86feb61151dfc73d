"""Core types and DTOs for the AI Operation Gateway."""

from __future__ import annotations

import base64
import binascii
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from rentai.gateway.errors import AllProvidersFailed, ErrorKind, InvalidInput, NoProviderConfigured

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Operation(str, Enum):
    """Abstract AI operations the gateway can dispatch."""

    GENERATE_TEXT = "generateText"
    GENERATE_PROPERTY_DESCRIPTION = "generatePropertyDescription"
    EXTRACT_DOCUMENT_INFO = "extractDocumentInfo"
    ANALYZE_DOCUMENT = "analyzeDocument"
    GENERATE_RECOMMENDATIONS = "generateRecommendations"

    @classmethod
    def parse(cls, name: str) -> Operation:
        try:
            return cls(name)
        except ValueError:
            raise InvalidInput(f"Unknown AI operation: {name!r}", {"operation": name}) from None


class FailureKind(str, Enum):
    """Why a single adapter invocation failed."""

    UNAVAILABLE = "unavailable"  # Disabled, missing credential, unsupported
    TRANSIENT = "transient"  # Timeout, rate limit, 5xx, network
    INVALID_INPUT = "invalid_input"  # Parameters rejected, never falls through


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CACHE_HIT = "cache_hit"


# ---------------------------------------------------------------------------
# Operation parameters, one frozen dataclass per operation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextGenerationParams:
    prompt: str
    max_tokens: int | None = None
    response_format: str = "text"  # "text" | "json"
    system_prompt: str = ""


@dataclass(frozen=True)
class PropertyDescriptionParams:
    title: str
    property_type: str
    bedrooms: int
    bathrooms: int
    location: str
    university: str = ""
    features: tuple[str, ...] = ()
    max_length: int | None = None


@dataclass(frozen=True)
class DocumentInfoParams:
    document_base64: str
    document_type: str = ""
    file_name: str = ""
    prompt: str = ""


@dataclass(frozen=True)
class DocumentAnalysisParams:
    document_base64: str = ""
    text: str = ""
    file_name: str = ""
    analysis_type: str = "general"
    prompt: str = ""
    response_format: str = "json"


@dataclass(frozen=True)
class RecommendationParams:
    preferences: dict[str, Any]
    properties: tuple[dict[str, Any], ...]
    count: int = 5
    include_reasons: bool = True


OperationParams = (
    TextGenerationParams
    | PropertyDescriptionParams
    | DocumentInfoParams
    | DocumentAnalysisParams
    | RecommendationParams
)


def params_to_dict(params: OperationParams) -> dict[str, Any]:
    return asdict(params)


def _pick(raw: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key. Callers send either snake_case or camelCase."""
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def _require_str(raw: dict[str, Any], operation: Operation, *keys: str) -> str:
    value = _pick(raw, *keys)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(
            f"Missing {keys[0]} parameter for {operation.value} operation",
            {"operation": operation.value, "field": keys[0]},
        )
    return value


def _optional_int(raw: dict[str, Any], operation: Operation, *keys: str, minimum: int = 0) -> int | None:
    value = _pick(raw, *keys)
    if value is None:
        return None
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or (isinstance(value, float) and not math.isfinite(value))
        or int(value) != value
    ):
        raise InvalidInput(
            f"{keys[0]} must be an integer",
            {"operation": operation.value, "field": keys[0]},
        )
    if value < minimum:
        raise InvalidInput(
            f"{keys[0]} must be >= {minimum}",
            {"operation": operation.value, "field": keys[0]},
        )
    return int(value)


def _require_int(raw: dict[str, Any], operation: Operation, *keys: str, minimum: int = 0) -> int:
    value = _optional_int(raw, operation, *keys, minimum=minimum)
    if value is None:
        raise InvalidInput(
            f"Missing {keys[0]} parameter for {operation.value} operation",
            {"operation": operation.value, "field": keys[0]},
        )
    return value


def _response_format(raw: dict[str, Any], operation: Operation, default: str) -> str:
    value = str(_pick(raw, "response_format", "responseFormat", default=default)).lower()
    if value in ("json_object", "json"):
        return "json"
    if value == "text":
        return "text"
    raise InvalidInput(
        f"Unsupported response_format: {value}",
        {"operation": operation.value, "field": "response_format"},
    )


def _check_base64(value: str, operation: Operation) -> str:
    # Accept data URLs ("data:application/pdf;base64,....")
    payload = value.split(",", 1)[1] if value.startswith("data:") and "," in value else value
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidInput(
            "document_base64 is not valid base64",
            {"operation": operation.value, "field": "document_base64"},
        ) from None
    return payload


def _build_text(raw: dict[str, Any]) -> TextGenerationParams:
    op = Operation.GENERATE_TEXT
    return TextGenerationParams(
        prompt=_require_str(raw, op, "prompt"),
        max_tokens=_optional_int(raw, op, "max_tokens", "maxTokens", minimum=1),
        response_format=_response_format(raw, op, "text"),
        system_prompt=str(_pick(raw, "system_prompt", "systemPrompt", default="")),
    )


def _build_property_description(raw: dict[str, Any]) -> PropertyDescriptionParams:
    op = Operation.GENERATE_PROPERTY_DESCRIPTION
    features = _pick(raw, "features", default=[])
    if not isinstance(features, (list, tuple)) or not all(isinstance(f, str) for f in features):
        raise InvalidInput("features must be a list of strings", {"operation": op.value, "field": "features"})
    return PropertyDescriptionParams(
        title=str(_pick(raw, "title", default="")),
        property_type=_require_str(raw, op, "property_type", "propertyType"),
        bedrooms=_require_int(raw, op, "bedrooms"),
        bathrooms=_require_int(raw, op, "bathrooms"),
        location=_require_str(raw, op, "location"),
        university=str(_pick(raw, "university", default="")),
        features=tuple(features),
        max_length=_optional_int(raw, op, "max_length", "maxLength", minimum=20),
    )


def _build_document_info(raw: dict[str, Any]) -> DocumentInfoParams:
    op = Operation.EXTRACT_DOCUMENT_INFO
    document = _require_str(raw, op, "document_base64", "base64File", "base64Image", "documentImageBase64")
    return DocumentInfoParams(
        document_base64=_check_base64(document, op),
        document_type=str(_pick(raw, "document_type", "documentType", default="")),
        file_name=str(_pick(raw, "file_name", "fileName", default="")),
        prompt=str(_pick(raw, "prompt", default="")),
    )


def _build_document_analysis(raw: dict[str, Any]) -> DocumentAnalysisParams:
    op = Operation.ANALYZE_DOCUMENT
    document = _pick(raw, "document_base64", "base64File", default="")
    text = _pick(raw, "text", default="")
    if not document and not (isinstance(text, str) and text.strip()):
        raise InvalidInput(
            "analyzeDocument requires document_base64 or text",
            {"operation": op.value, "field": "document_base64"},
        )
    return DocumentAnalysisParams(
        document_base64=_check_base64(document, op) if document else "",
        text=str(text),
        file_name=str(_pick(raw, "file_name", "fileName", default="")),
        analysis_type=str(_pick(raw, "analysis_type", "analysisType", default="general")),
        prompt=str(_pick(raw, "prompt", default="")),
        response_format=_response_format(raw, op, "json"),
    )


_PREFERENCE_NUMBERS = ("budget", "minBedrooms")
_PREFERENCE_LISTS = ("mustHaveFeatures",)
_PROPERTY_NUMBERS = ("price", "bedrooms", "distanceToUniversity")
_PROPERTY_LISTS = ("features", "nearbyUniversities")


def _check_fields(
    item: dict[str, Any], operation: Operation, path: str, numbers: tuple[str, ...], lists: tuple[str, ...]
) -> None:
    """Type-check the scoring inputs of one preferences/property object. None means absent."""
    for key in numbers:
        value = item.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise InvalidInput(
                f"{path}.{key} must be a finite number",
                {"operation": operation.value, "field": f"{path}.{key}"},
            )
    for key in lists:
        value = item.get(key)
        if value is not None and not isinstance(value, (list, tuple)):
            raise InvalidInput(
                f"{path}.{key} must be a list",
                {"operation": operation.value, "field": f"{path}.{key}"},
            )


def _build_recommendations(raw: dict[str, Any]) -> RecommendationParams:
    op = Operation.GENERATE_RECOMMENDATIONS
    preferences = _pick(raw, "preferences", "userPreferences", default={})
    properties = _pick(raw, "properties", default=None)
    if not isinstance(preferences, dict):
        raise InvalidInput("preferences must be an object", {"operation": op.value, "field": "preferences"})
    if not isinstance(properties, (list, tuple)) or not all(isinstance(p, dict) for p in properties):
        raise InvalidInput(
            "properties must be a list of objects", {"operation": op.value, "field": "properties"}
        )
    _check_fields(preferences, op, "preferences", _PREFERENCE_NUMBERS, _PREFERENCE_LISTS)
    for index, prop in enumerate(properties):
        _check_fields(prop, op, f"properties[{index}]", _PROPERTY_NUMBERS, _PROPERTY_LISTS)
    count = _optional_int(raw, op, "count", minimum=1)
    return RecommendationParams(
        preferences=dict(preferences),
        properties=tuple(properties),
        count=min(count, 50) if count is not None else 5,
        include_reasons=bool(_pick(raw, "include_reasons", "includeReasons", default=True)),
    )


_PARAM_BUILDERS = {
    Operation.GENERATE_TEXT: _build_text,
    Operation.GENERATE_PROPERTY_DESCRIPTION: _build_property_description,
    Operation.EXTRACT_DOCUMENT_INFO: _build_document_info,
    Operation.ANALYZE_DOCUMENT: _build_document_analysis,
    Operation.GENERATE_RECOMMENDATIONS: _build_recommendations,
}


def build_params(operation: Operation, raw: dict[str, Any] | None) -> OperationParams:
    """Validate a raw parameter bag into the operation's typed parameters.

    Raises InvalidInput when required fields are missing or malformed.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidInput("params must be an object", {"operation": operation.value})
    return _PARAM_BUILDERS[operation](raw)


# ---------------------------------------------------------------------------
# Adapter results
# ---------------------------------------------------------------------------


@dataclass
class AdapterSuccess:
    value: Any
    model: str = ""
    latency_ms: int = 0
    raw_text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


@dataclass
class AdapterFailure:
    kind: FailureKind
    message: str
    error_code: str = ""  # e.g. "429", "503_BUSY", "SAFETY", "TIMEOUT"
    latency_ms: int = 0


AdapterResult = AdapterSuccess | AdapterFailure


# ---------------------------------------------------------------------------
# Dispatch records
# ---------------------------------------------------------------------------


@dataclass
class DispatchAttempt:
    """One adapter attempt (or cache hit) within a single dispatch."""

    adapter: str
    operation: Operation
    outcome: AttemptOutcome
    latency_ms: int = 0
    error_kind: FailureKind | None = None
    error: str = ""
    error_code: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    def to_dict(self) -> dict:
        return {
            "adapter": self.adapter,
            "operation": self.operation.value,
            "outcome": self.outcome.value,
            "latencyMs": self.latency_ms,
            "errorKind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "errorCode": self.error_code,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "costUsd": self.cost_usd,
        }


@dataclass
class DispatchResult:
    """Single categorized outcome of a dispatch: success + servedBy, or one failure kind."""

    operation: Operation
    success: bool
    value: Any = None
    served_by: str = ""
    cached: bool = False
    error_kind: ErrorKind | None = None
    message: str = ""
    attempts: list[DispatchAttempt] = field(default_factory=list)
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def failures(self) -> list[dict]:
        return [a.to_dict() for a in self.attempts if a.outcome == AttemptOutcome.FAILURE]

    def to_dict(self) -> dict:
        """Serialize to the JSON contract consumed by HTTP handlers."""
        data: dict[str, Any] = {
            "success": self.success,
            "operation": self.operation.value,
            "attempts": [a.to_dict() for a in self.attempts],
        }
        if self.success:
            data["value"] = self.value
            data["servedBy"] = self.served_by
            data["cached"] = self.cached
        else:
            data["errorKind"] = self.error_kind.value if self.error_kind else None
            data["details"] = {"message": self.message, "failures": self.failures}
        return data

    def raise_for_error(self) -> Any:
        """Return the value on success, otherwise raise the matching GatewayError."""
        if self.success:
            return self.value
        if self.error_kind == ErrorKind.INVALID_INPUT:
            raise InvalidInput(self.message, {"failures": self.failures})
        if self.error_kind == ErrorKind.NO_PROVIDER_CONFIGURED:
            raise NoProviderConfigured(self.message, {"operation": self.operation.value})
        raise AllProvidersFailed(self.message, self.failures)


# ---------------------------------------------------------------------------
# Simulation policy
# ---------------------------------------------------------------------------


# Legacy per-vendor flags used by the older test endpoints
_LEGACY_FORCE_FLAGS = {
    "forceFailGemini": "gemini",
    "forceFailOpenAI": "openai",
    "forceFailDeepSeek": "deepseek",
    "forceFailCustom": "custom",
}


@dataclass(frozen=True)
class SimulationPolicy:
    """Per-call override that forces named adapters (or all) to fail transiently."""

    force_fail_adapters: frozenset[str] = frozenset()
    force_fail_all: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.force_fail_all and not self.force_fail_adapters

    def forces(self, adapter_name: str) -> bool:
        return self.force_fail_all or adapter_name in self.force_fail_adapters

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> SimulationPolicy:
        if not raw:
            return cls()
        names = _pick(raw, "force_fail_adapter", "forceFailAdapter", "force_fail_adapters", default=[])
        if isinstance(names, str):
            names = [names]
        if not isinstance(names, (list, tuple, set, frozenset)):
            raise InvalidInput("simulation.forceFailAdapter must be a list of adapter names")
        adapters = {str(n).lower() for n in names}
        for flag, adapter in _LEGACY_FORCE_FLAGS.items():
            if raw.get(flag) is True:
                adapters.add(adapter)
        force_all = bool(_pick(raw, "force_fail_all", "forceFailAll", default=False))
        return cls(force_fail_adapters=frozenset(adapters), force_fail_all=force_all)


# ---------------------------------------------------------------------------
# Adapter / gateway configuration
# ---------------------------------------------------------------------------


@dataclass
class AdapterConfig:
    """Priority and connection configuration for one adapter."""

    name: str
    priority: int = 100  # Lower = tried first
    enabled: bool = True
    timeout_seconds: float = 30.0
    model: str = ""


# Priorities follow the production fallback order: built-in first, then paid
DEFAULT_ADAPTER_CONFIGS: dict[str, AdapterConfig] = {
    "custom": AdapterConfig(name="custom", priority=1, timeout_seconds=10.0),
    "deepseek": AdapterConfig(name="deepseek", priority=2, timeout_seconds=60.0, model="deepseek-chat"),
    "gemini": AdapterConfig(name="gemini", priority=3, timeout_seconds=30.0, model="gemini-2.0-flash"),
    "openai": AdapterConfig(name="openai", priority=4, timeout_seconds=30.0, model="gpt-4o-mini"),
}

DEFAULT_CACHEABLE_OPERATIONS: frozenset[Operation] = frozenset({Operation.GENERATE_RECOMMENDATIONS})


def _parse_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class GatewayConfig:
    """Explicit gateway configuration, built once at startup and passed by handle."""

    adapters: dict[str, AdapterConfig] = field(
        default_factory=lambda: {k: AdapterConfig(**asdict(v)) for k, v in DEFAULT_ADAPTER_CONFIGS.items()}
    )
    zero_cost_mode: bool = False
    adapter_timeout_seconds: float = 30.0  # Upper bound applied by the dispatcher
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 100
    cacheable_operations: frozenset[Operation] = DEFAULT_CACHEABLE_OPERATIONS
    api_keys: dict[str, str] = field(default_factory=dict)

    def is_cacheable(self, operation: Operation) -> bool:
        return operation in self.cacheable_operations

    def timeout_for(self, adapter_name: str) -> float:
        config = self.adapters.get(adapter_name)
        if config is None:
            return self.adapter_timeout_seconds
        return min(config.timeout_seconds, self.adapter_timeout_seconds)

    @classmethod
    def from_settings(cls, settings: Any) -> GatewayConfig:
        """Build from application Settings (see rentai.core.config)."""
        config = cls(
            zero_cost_mode=settings.ai_zero_cost_mode,
            adapter_timeout_seconds=settings.ai_adapter_timeout_seconds,
            cache_ttl_seconds=settings.ai_cache_ttl_seconds,
            cache_max_entries=settings.ai_cache_max_entries,
            api_keys={
                "openai": settings.openai_api_key,
                "gemini": settings.gemini_api_key,
                "deepseek": settings.deepseek_api_key,
            },
        )

        for item in _parse_csv(settings.ai_provider_priorities):
            name, _, priority = item.partition(":")
            name = name.strip().lower()
            if name not in config.adapters:
                config.adapters[name] = AdapterConfig(name=name)
            if priority.strip():
                config.adapters[name].priority = int(priority)

        enabled = {name.lower() for name in _parse_csv(settings.ai_enabled_providers)}
        for name, adapter_config in config.adapters.items():
            adapter_config.enabled = name in enabled

        config.adapters["openai"].model = settings.openai_model
        config.adapters["gemini"].model = settings.gemini_model
        config.adapters["deepseek"].model = settings.deepseek_model

        config.cacheable_operations = frozenset(
            Operation(name) for name in _parse_csv(settings.ai_cacheable_operations)
        )
        return config

"""Provider Adapters — one uniform contract over each AI backend.

Each adapter turns an (operation, params) pair into its backend's protocol,
applies its own request timeout, and returns either an AdapterSuccess or an
AdapterFailure. Foreign errors never escape: they are translated into one of
three failure kinds (unavailable / transient / invalid_input).

Adapter-specific behaviors:
  - custom: built-in engine, free, no credentials, supports every operation
  - deepseek: OpenAI-compatible, text-only, "Server Busy" 503 → transient
  - gemini: Google AI generateContent, inline documents, SAFETY block → invalid_input
  - openai: Chat Completions, documents as image/file content parts
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from rentai.gateway import custom_engine
from rentai.gateway.normalizer import MalformedOutput, normalize_output
from rentai.gateway.prompts import PromptSpec, build_prompt
from rentai.gateway.types import (
    AdapterFailure,
    AdapterResult,
    AdapterSuccess,
    FailureKind,
    Operation,
    OperationParams,
)

logger = logging.getLogger(__name__)

ALL_OPERATIONS: frozenset[Operation] = frozenset(Operation)
TEXT_OPERATIONS: frozenset[Operation] = frozenset(
    {
        Operation.GENERATE_TEXT,
        Operation.GENERATE_PROPERTY_DESCRIPTION,
        Operation.GENERATE_RECOMMENDATIONS,
    }
)


class AdapterError(Exception):
    """Raised inside an adapter to report a categorized failure."""

    def __init__(self, kind: FailureKind, message: str, error_code: str = ""):
        super().__init__(message)
        self.kind = kind
        self.error_code = error_code


def classify_http_status(status_code: int) -> FailureKind:
    """Map an HTTP status from a provider to a failure kind."""
    if status_code in (401, 403, 404):
        return FailureKind.UNAVAILABLE  # Bad credential or misconfigured model
    if status_code in (400, 413, 422):
        return FailureKind.INVALID_INPUT
    return FailureKind.TRANSIENT  # 408, 429, 5xx and anything unexpected


class BaseProviderAdapter(ABC):
    """Base class for all provider adapters."""

    name: str
    capabilities: frozenset[Operation] = ALL_OPERATIONS
    paid: bool = True
    requires_api_key: bool = True
    records_health: bool = True
    default_model: str = ""

    def __init__(self, api_key: str = "", model: str = "", timeout: float = 30.0, **kwargs):
        self.api_key = api_key
        self.model = model or self.default_model
        self.timeout = timeout

    def supports(self, operation: Operation) -> bool:
        return operation in self.capabilities

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key) or not self.requires_api_key

    async def invoke(self, operation: Operation, params: OperationParams) -> AdapterResult:
        """Run one operation. Never raises for provider problems."""
        if not self.supports(operation):
            return AdapterFailure(
                kind=FailureKind.UNAVAILABLE,
                message=f"{self.name} does not support {operation.value}",
                error_code="UNSUPPORTED",
            )
        if not self.has_credentials:
            return AdapterFailure(
                kind=FailureKind.UNAVAILABLE,
                message=f"No API key configured for {self.name}",
                error_code="NO_API_KEY",
            )

        start = time.monotonic()

        def _failure(kind: FailureKind, message: str, code: str = "") -> AdapterFailure:
            logger.debug("%s %s failed (%s): %s", self.name, operation.value, kind.value, message)
            return AdapterFailure(
                kind=kind,
                message=message,
                error_code=code,
                latency_ms=int((time.monotonic() - start) * 1000),
            )

        try:
            result = await self._execute(operation, params)
        except AdapterError as e:
            return _failure(e.kind, str(e), e.error_code)
        except httpx.TimeoutException:
            return _failure(FailureKind.TRANSIENT, f"{self.name} timeout after {self.timeout}s", "TIMEOUT")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            return _failure(classify_http_status(status), f"{self.name} returned HTTP {status}", str(status))
        except httpx.TransportError as e:
            return _failure(FailureKind.TRANSIENT, f"{self.name} network error: {e}", "NETWORK")
        except MalformedOutput as e:
            return _failure(FailureKind.TRANSIENT, f"{self.name} returned unusable output: {e}", "MALFORMED")

        result.latency_ms = int((time.monotonic() - start) * 1000)
        return result

    @abstractmethod
    async def _execute(self, operation: Operation, params: OperationParams) -> AdapterSuccess:
        """Perform the operation against the backend."""
        ...


# ---------------------------------------------------------------------------
# Custom Adapter (built-in engine)
# ---------------------------------------------------------------------------


class CustomAdapter(BaseProviderAdapter):
    """Built-in engine. Free, always credentialed, no network."""

    name = "custom"
    paid = False
    requires_api_key = False
    default_model = custom_engine.ENGINE_VERSION

    _HANDLERS = {
        Operation.GENERATE_TEXT: custom_engine.generate_text,
        Operation.GENERATE_PROPERTY_DESCRIPTION: custom_engine.generate_property_description,
        Operation.EXTRACT_DOCUMENT_INFO: custom_engine.extract_document_info,
        Operation.ANALYZE_DOCUMENT: custom_engine.analyze_document,
        Operation.GENERATE_RECOMMENDATIONS: custom_engine.generate_recommendations,
    }

    async def _execute(self, operation: Operation, params: OperationParams) -> AdapterSuccess:
        try:
            value = self._HANDLERS[operation](params)
        except custom_engine.UnreadableDocument as e:
            # Remote adapters may still read it (vision / PDF input)
            raise AdapterError(FailureKind.UNAVAILABLE, str(e), "UNREADABLE") from e
        except (TypeError, ValueError) as e:
            raise AdapterError(FailureKind.INVALID_INPUT, str(e), "REJECTED") from e
        return AdapterSuccess(value=value, model=self.model)


# ---------------------------------------------------------------------------
# OpenAI-compatible Chat Completions (OpenAI, DeepSeek)
# ---------------------------------------------------------------------------

# Pricing per 1M tokens
_OPENAI_PRICING = {
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4.1": {"input": 2.00, "output": 8.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
}

_DEEPSEEK_PRICING = {
    "deepseek-chat": {"input": 0.28, "output": 0.42},
    "deepseek-reasoner": {"input": 0.28, "output": 0.42},
}


def _calc_cost(pricing: dict[str, dict[str, float]], model: str, default: str, input_tokens: int, output_tokens: int) -> float:
    rates = pricing.get(model, pricing[default])
    return round((input_tokens * rates["input"] + output_tokens * rates["output"]) / 1_000_000, 6)


def _json_body(resp: httpx.Response) -> dict:
    """Decode a provider response body, which must be a JSON object."""
    try:
        data = resp.json()
    except ValueError as e:
        raise MalformedOutput(f"Response body is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedOutput("Response body is not a JSON object")
    return data


def _token_count(usage: Any, key: str) -> int:
    value = usage.get(key) if isinstance(usage, dict) else None
    return value if isinstance(value, int) and not isinstance(value, bool) and value >= 0 else 0


class _ChatCompletionsAdapter(BaseProviderAdapter):
    api_url: str
    pricing: dict[str, dict[str, float]]

    def _user_content(self, prompt: PromptSpec) -> Any:
        document = prompt.document
        if document is None:
            return prompt.user_prompt
        if document.is_image:
            return [
                {"type": "text", "text": prompt.user_prompt},
                {"type": "image_url", "image_url": {"url": f"data:{document.mime_type};base64,{document.data_base64}"}},
            ]
        if document.mime_type == "application/pdf":
            return [
                {"type": "text", "text": prompt.user_prompt},
                {
                    "type": "file",
                    "file": {
                        "filename": document.file_name or "document.pdf",
                        "file_data": f"data:application/pdf;base64,{document.data_base64}",
                    },
                },
            ]
        text = custom_engine.decode_document_text(document.data_base64)
        if not text:
            raise AdapterError(FailureKind.INVALID_INPUT, f"Unsupported document type: {document.mime_type}", "MIME")
        return f"{prompt.user_prompt}\n\nDocument:\n{text}"

    def _build_payload(self, prompt: PromptSpec) -> dict:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": prompt.system_prompt},
                {"role": "user", "content": self._user_content(prompt)},
            ],
            "temperature": 0.0 if prompt.json_output else 0.7,
            "max_tokens": prompt.max_tokens,
        }
        if prompt.json_output:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def _check_response(self, resp: httpx.Response) -> None:
        """Hook for vendor-specific status handling before raise_for_status."""
        if resp.status_code == 429:
            raise AdapterError(FailureKind.TRANSIENT, f"Rate limited by {self.name}", "429")

    async def _execute(self, operation: Operation, params: OperationParams) -> AdapterSuccess:
        prompt = build_prompt(operation, params)
        payload = self._build_payload(prompt)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                self.api_url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )

        self._check_response(resp)
        resp.raise_for_status()
        data = _json_body(resp)

        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedOutput(f"Unexpected response structure: {e}") from e
        if not isinstance(text, str):
            raise MalformedOutput("Message content is not text")

        usage = data.get("usage") or {}
        input_tokens = _token_count(usage, "prompt_tokens")
        output_tokens = _token_count(usage, "completion_tokens")
        model = data.get("model")
        if not isinstance(model, str) or not model:
            model = self.model

        return AdapterSuccess(
            value=normalize_output(operation, params, text),
            model=model,
            raw_text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=_calc_cost(self.pricing, self.model, self.default_model, input_tokens, output_tokens),
        )


class OpenAIAdapter(_ChatCompletionsAdapter):
    """OpenAI Chat Completions adapter."""

    name = "openai"
    default_model = "gpt-4o-mini"
    api_url = "https://api.openai.com/v1/chat/completions"
    pricing = _OPENAI_PRICING


class DeepSeekAdapter(_ChatCompletionsAdapter):
    """DeepSeek adapter with Server Busy handling. Text-only."""

    name = "deepseek"
    capabilities = TEXT_OPERATIONS
    default_model = "deepseek-chat"
    api_url = "https://api.deepseek.com/chat/completions"
    pricing = _DEEPSEEK_PRICING

    def _check_response(self, resp: httpx.Response) -> None:
        super()._check_response(resp)
        if resp.status_code == 503 and "busy" in resp.text.lower():
            raise AdapterError(FailureKind.TRANSIENT, "DeepSeek server busy", "503_BUSY")


# ---------------------------------------------------------------------------
# Gemini Adapter (Google AI)
# ---------------------------------------------------------------------------

_GEMINI_PRICING = {
    "gemini-2.0-flash": {"input": 0.10, "output": 0.40},
    "gemini-2.5-flash": {"input": 0.15, "output": 0.60},
    "gemini-2.5-pro": {"input": 1.25, "output": 10.00},
}


class GeminiAdapter(BaseProviderAdapter):
    """Google Gemini adapter with SAFETY filter detection."""

    name = "gemini"
    default_model = "gemini-2.0-flash"
    api_url_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def _build_payload(self, prompt: PromptSpec) -> dict:
        parts: list[dict[str, Any]] = [{"text": prompt.user_prompt}]
        if prompt.document is not None:
            parts.append(
                {"inlineData": {"mimeType": prompt.document.mime_type, "data": prompt.document.data_base64}}
            )

        generation_config: dict[str, Any] = {
            "temperature": 0.0 if prompt.json_output else 0.7,
            "maxOutputTokens": prompt.max_tokens,
        }
        if prompt.json_output:
            generation_config["responseMimeType"] = "application/json"

        return {
            "contents": [{"role": "user", "parts": parts}],
            # System instruction is separate from contents in the Gemini API
            "systemInstruction": {"parts": [{"text": prompt.system_prompt}]},
            "generationConfig": generation_config,
        }

    async def _execute(self, operation: Operation, params: OperationParams) -> AdapterSuccess:
        prompt = build_prompt(operation, params)
        url = self.api_url_template.format(model=self.model)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                url,
                json=self._build_payload(prompt),
                params={"key": self.api_key},
                headers={"Content-Type": "application/json"},
            )

        if resp.status_code == 429:
            raise AdapterError(FailureKind.TRANSIENT, "Rate limited by Google AI", "429")

        resp.raise_for_status()
        data = _json_body(resp)

        try:
            candidates = data.get("candidates") or []
            if not candidates:
                block_reason = (data.get("promptFeedback") or {}).get("blockReason", "")
                if block_reason:
                    raise AdapterError(
                        FailureKind.INVALID_INPUT,
                        f"Prompt blocked by Gemini: {block_reason}",
                        f"BLOCKED_{block_reason}",
                    )
                raise MalformedOutput("No candidates in Gemini response")

            candidate = candidates[0]
            if candidate.get("finishReason") == "SAFETY":
                raise AdapterError(FailureKind.INVALID_INPUT, "Gemini safety filter triggered", "SAFETY")
            parts = (candidate.get("content") or {}).get("parts") or []
            text = "".join(str(p["text"]) for p in parts if "text" in p)
        except (AttributeError, KeyError, TypeError) as e:
            raise MalformedOutput(f"Unexpected response structure: {e}") from e

        usage = data.get("usageMetadata") or {}
        input_tokens = _token_count(usage, "promptTokenCount")
        output_tokens = _token_count(usage, "candidatesTokenCount")

        return AdapterSuccess(
            value=normalize_output(operation, params, text),
            model=self.model,
            raw_text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=_calc_cost(_GEMINI_PRICING, self.model, self.default_model, input_tokens, output_tokens),
        )


# ---------------------------------------------------------------------------
# Adapter classes by name
# ---------------------------------------------------------------------------

ADAPTER_CLASSES: dict[str, type[BaseProviderAdapter]] = {
    "custom": CustomAdapter,
    "deepseek": DeepSeekAdapter,
    "gemini": GeminiAdapter,
    "openai": OpenAIAdapter,
}


def get_adapter(name: str, api_key: str = "", **kwargs) -> BaseProviderAdapter:
    """Factory: get the adapter implementation registered under a name."""
    cls = ADAPTER_CLASSES.get(name)
    if cls is None:
        raise ValueError(f"No adapter registered for provider: {name}")
    return cls(api_key=api_key, **kwargs)

"""Operation Dispatcher — the priority-ordered fallback loop.

For one (operation, params) call:
  1. Cacheable operation with a live cache entry → return it (one cache_hit attempt)
  2. Ordered adapters from the Registry, decorated by the Failure Simulator
  3. Try each adapter once, under its timeout:
       success        → cache (if cacheable) and return, recording servedBy
       invalid_input  → stop, no fallback
       unavailable /
       transient      → record the attempt, try the next adapter
  4. Nothing left → AllProvidersFailed with every failure in attempt order

Total latency is bounded by (adapters tried) × (per-adapter timeout).
"""

from __future__ import annotations

import asyncio
import logging
import time

from rentai.core.metrics import (
    AI_ADAPTER_ATTEMPTS,
    AI_COST_USD_TOTAL,
    AI_DISPATCH_DURATION,
    AI_DISPATCH_TOTAL,
    AI_TOKENS_TOTAL,
)
from rentai.gateway.adapters import BaseProviderAdapter
from rentai.gateway.cache import ResultCache, fingerprint
from rentai.gateway.errors import ErrorKind
from rentai.gateway.registry import ProviderRegistry, ProviderStatus, status_from_failure
from rentai.gateway.simulator import FailureSimulator
from rentai.gateway.types import (
    AdapterFailure,
    AdapterResult,
    AttemptOutcome,
    DispatchAttempt,
    DispatchResult,
    FailureKind,
    GatewayConfig,
    Operation,
    OperationParams,
    SimulationPolicy,
)

logger = logging.getLogger(__name__)


class OperationDispatcher:
    """Runs one dispatch at a time per call; safe to share across concurrent requests."""

    def __init__(self, registry: ProviderRegistry, cache: ResultCache, config: GatewayConfig):
        self.registry = registry
        self.cache = cache
        self.config = config

    async def _invoke(self, adapter: BaseProviderAdapter, operation: Operation, params: OperationParams) -> AdapterResult:
        """Invoke one adapter, converting timeouts and stray exceptions to transient failures."""
        timeout = self.config.timeout_for(adapter.name)
        start = time.monotonic()
        try:
            return await asyncio.wait_for(adapter.invoke(operation, params), timeout=timeout)
        except asyncio.TimeoutError:
            return AdapterFailure(
                kind=FailureKind.TRANSIENT,
                message=f"{adapter.name} did not respond within {timeout:.0f}s",
                error_code="TIMEOUT",
                latency_ms=int((time.monotonic() - start) * 1000),
            )
        except Exception as e:
            logger.exception("Adapter %s raised during %s", adapter.name, operation.value)
            return AdapterFailure(
                kind=FailureKind.TRANSIENT,
                message=f"{adapter.name} error: {e}",
                error_code="EXCEPTION",
                latency_ms=int((time.monotonic() - start) * 1000),
            )

    def _finish(self, result: DispatchResult, started: float) -> DispatchResult:
        if result.success:
            outcome = "cache_hit" if result.cached else "success"
        else:
            outcome = result.error_kind.value if result.error_kind else "error"
        AI_DISPATCH_TOTAL.labels(operation=result.operation.value, outcome=outcome).inc()
        AI_DISPATCH_DURATION.labels(operation=result.operation.value).observe(time.perf_counter() - started)
        return result

    async def dispatch(
        self,
        operation: Operation,
        params: OperationParams,
        simulation: SimulationPolicy | None = None,
        cache_key: str | None = None,
        use_cache: bool = True,
    ) -> DispatchResult:
        started = time.perf_counter()
        attempts: list[DispatchAttempt] = []

        # Step 1: cache
        cacheable = use_cache and self.config.is_cacheable(operation)
        key = None
        if cacheable:
            key = cache_key or fingerprint(operation, params)
            entry = self.cache.get(key)
            if entry is not None:
                logger.debug("Cache hit for %s (%s)", operation.value, key[:12])
                attempts.append(
                    DispatchAttempt(adapter=entry.served_by, operation=operation, outcome=AttemptOutcome.CACHE_HIT)
                )
                AI_ADAPTER_ATTEMPTS.labels(adapter=entry.served_by or "cache", outcome="cache_hit").inc()
                return self._finish(
                    DispatchResult(
                        operation=operation,
                        success=True,
                        value=entry.value,
                        served_by=entry.served_by,
                        cached=True,
                        attempts=attempts,
                    ),
                    started,
                )

        # Step 2: fallback chain
        adapters = FailureSimulator.apply(self.registry.enabled_adapters_for(operation), simulation)
        if not adapters:
            logger.warning("No AI adapter configured for %s", operation.value)
            return self._finish(
                DispatchResult(
                    operation=operation,
                    success=False,
                    error_kind=ErrorKind.NO_PROVIDER_CONFIGURED,
                    message=f"No enabled AI provider supports {operation.value}",
                ),
                started,
            )

        logger.info(
            "Dispatching %s across %d adapter(s): %s",
            operation.value,
            len(adapters),
            ", ".join(a.name for a in adapters),
        )

        # Step 3: try each adapter once, in order
        for adapter in adapters:
            result = await self._invoke(adapter, operation, params)

            if isinstance(result, AdapterFailure):
                attempts.append(
                    DispatchAttempt(
                        adapter=adapter.name,
                        operation=operation,
                        outcome=AttemptOutcome.FAILURE,
                        latency_ms=result.latency_ms,
                        error_kind=result.kind,
                        error=result.message,
                        error_code=result.error_code,
                    )
                )
                AI_ADAPTER_ATTEMPTS.labels(adapter=adapter.name, outcome=result.kind.value).inc()
                self._record(adapter, status_from_failure(result.kind, result.error_code), result.message)

                if result.kind == FailureKind.INVALID_INPUT:
                    logger.info("%s rejected %s input: %s", adapter.name, operation.value, result.message)
                    return self._finish(
                        DispatchResult(
                            operation=operation,
                            success=False,
                            error_kind=ErrorKind.INVALID_INPUT,
                            message=result.message,
                            attempts=attempts,
                        ),
                        started,
                    )

                logger.warning(
                    "%s failed for %s (%s): %s; falling back",
                    adapter.name,
                    operation.value,
                    result.kind.value,
                    result.message,
                )
                continue

            attempts.append(
                DispatchAttempt(
                    adapter=adapter.name,
                    operation=operation,
                    outcome=AttemptOutcome.SUCCESS,
                    latency_ms=result.latency_ms,
                    input_tokens=result.input_tokens,
                    output_tokens=result.output_tokens,
                    cost_usd=result.cost_usd,
                )
            )
            AI_ADAPTER_ATTEMPTS.labels(adapter=adapter.name, outcome="success").inc()
            AI_TOKENS_TOTAL.labels(adapter=adapter.name, direction="input").inc(result.input_tokens)
            AI_TOKENS_TOTAL.labels(adapter=adapter.name, direction="output").inc(result.output_tokens)
            AI_COST_USD_TOTAL.labels(adapter=adapter.name).inc(result.cost_usd)
            self._record(adapter, ProviderStatus.ACTIVE)

            if cacheable and key is not None:
                self.cache.put(key, result.value, ttl=self.config.cache_ttl_seconds, served_by=adapter.name)

            logger.info(
                "%s served by %s in %dms (tokens in=%d out=%d, cost=$%.6f)",
                operation.value,
                adapter.name,
                result.latency_ms,
                result.input_tokens,
                result.output_tokens,
                result.cost_usd,
            )
            return self._finish(
                DispatchResult(
                    operation=operation,
                    success=True,
                    value=result.value,
                    served_by=adapter.name,
                    attempts=attempts,
                ),
                started,
            )

        # Step 4: exhausted
        logger.error("All %d AI adapter(s) failed for %s", len(attempts), operation.value)
        return self._finish(
            DispatchResult(
                operation=operation,
                success=False,
                error_kind=ErrorKind.ALL_PROVIDERS_FAILED,
                message=f"All AI providers failed for {operation.value}",
                attempts=attempts,
            ),
            started,
        )

    def _record(self, adapter: BaseProviderAdapter, status: ProviderStatus, error: str = "") -> None:
        if not adapter.records_health:
            return
        self.registry.record_outcome(adapter.name, status, error)

"""AI Gateway API — operation dispatch, fallback diagnostics and provider admin.

Dispatch results are returned verbatim, including per-adapter attempt logs,
so the dashboards and the fallback test page can show which provider served
a request and why the others were skipped.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from rentai.core.rate_limit import ADMIN_LIMIT, OPERATIONS_LIMIT, TEST_FALLBACK_LIMIT, limiter
from rentai.gateway import AiGateway
from rentai.gateway.errors import ErrorKind, InvalidInput
from rentai.schemas.ai_gateway import (
    CacheFlushResponse,
    OperationRequest,
    ProviderStatusResponse,
    ProviderToggle,
    ScenarioRequest,
    ZeroCostToggle,
)

router = APIRouter(prefix="/ai", tags=["ai-gateway"])

_HTTP_STATUS_BY_ERROR = {
    ErrorKind.INVALID_INPUT.value: 400,
    ErrorKind.NO_PROVIDER_CONFIGURED.value: 503,
    ErrorKind.ALL_PROVIDERS_FAILED.value: 503,
}


def get_gateway(request: Request) -> AiGateway:
    return request.app.state.ai_gateway


def _http_status(result: dict) -> int:
    if result.get("success"):
        return 200
    return _HTTP_STATUS_BY_ERROR.get(result.get("errorKind"), 500)


# ── Operations ─────────────────────────────────────────────────────


@router.post("/operations")
@limiter.limit(OPERATIONS_LIMIT)
async def execute_operation(request: Request, body: OperationRequest, gateway: AiGateway = Depends(get_gateway)):
    simulation = body.simulation.to_policy_dict() if body.simulation else None
    result = await gateway.execute_operation(
        body.operation, body.params, simulation, use_cache=not body.force_refresh
    )
    return JSONResponse(status_code=_http_status(result), content=result)


@router.post("/test-fallback")
@limiter.limit(TEST_FALLBACK_LIMIT)
async def test_fallback(request: Request, body: ScenarioRequest, gateway: AiGateway = Depends(get_gateway)):
    try:
        report = await gateway.run_scenario(body.scenario, body.operation, body.params)
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail={"message": e.message, **e.details})
    return report


# ── Status ─────────────────────────────────────────────────────────


@router.get("/providers/status", response_model=ProviderStatusResponse)
async def provider_status(
    operation: str = Query("generateText", max_length=64),
    gateway: AiGateway = Depends(get_gateway),
):
    try:
        status = gateway.get_provider_status(operation)
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=e.message)
    return ProviderStatusResponse(
        operation=operation,
        status=status,
        priority_order=list(status),
        servable=bool(status),
        zero_cost_mode=gateway.registry.zero_cost_mode,
    )


@router.get("/status")
async def gateway_status(gateway: AiGateway = Depends(get_gateway)):
    return gateway.get_status()


@router.get("/providers")
async def list_providers(gateway: AiGateway = Depends(get_gateway)):
    return gateway.describe_providers()


# ── Admin ──────────────────────────────────────────────────────────


@router.patch("/providers/{name}")
@limiter.limit(ADMIN_LIMIT)
async def toggle_provider(request: Request, name: str, body: ProviderToggle, gateway: AiGateway = Depends(get_gateway)):
    try:
        gateway.set_provider_enabled(name, body.enabled)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown AI provider: {name}")
    return next(p for p in gateway.describe_providers()["providers"] if p["name"] == name)


@router.put("/zero-cost-mode")
@limiter.limit(ADMIN_LIMIT)
async def set_zero_cost_mode(request: Request, body: ZeroCostToggle, gateway: AiGateway = Depends(get_gateway)):
    gateway.set_zero_cost_mode(body.enabled)
    return gateway.describe_providers()


@router.post("/cache/flush", response_model=CacheFlushResponse)
@limiter.limit(ADMIN_LIMIT)
async def flush_cache(request: Request, gateway: AiGateway = Depends(get_gateway)):
    return CacheFlushResponse(flushed=gateway.flush_cache())

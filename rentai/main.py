import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from rentai.api.v1.router import api_v1_router
from rentai.core.config import settings, validate_settings_for_production
from rentai.core.logging import setup_logging
from rentai.core.metrics import PrometheusMiddleware, metrics_response
from rentai.core.rate_limit import limiter
from rentai.core.sentry import init_sentry
from rentai.gateway import AiGateway

# Configure logging before anything else
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    init_sentry()
    gateway: AiGateway = app.state.ai_gateway
    logger.info(
        "Starting RentAI gateway (zero-cost mode=%s, providers=%s)",
        gateway.registry.zero_cost_mode,
        ", ".join(gateway.registry.names),
    )

    yield

    # Shutdown
    flushed = gateway.flush_cache()
    logger.info("RentAI gateway shut down (%d cached results dropped)", flushed)


# Log unhandled exceptions so they appear in the platform logs
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": f"{type(exc).__name__}: {exc}"})


def create_app(gateway: AiGateway | None = None) -> FastAPI:
    """Build the application. The gateway is created eagerly so it exists without lifespan."""
    app = FastAPI(
        title="RentAI Gateway",
        description="AI operation gateway for the rental marketplace: provider fallback, caching, diagnostics",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs" if settings.app_debug else None,
        redoc_url="/api/redoc" if settings.app_debug else None,
    )
    if gateway is None:
        # Exits listing every configuration error
        validate_settings_for_production()
        gateway = AiGateway.from_settings(settings)
    app.state.ai_gateway = gateway

    app.add_exception_handler(Exception, _unhandled_exception_handler)

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(PrometheusMiddleware)

    # CORS: parse allowed_origins from settings (comma-separated)
    origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # API routes
    app.include_router(api_v1_router)

    @app.get("/api/v1/health")
    async def health():
        summary = app.state.ai_gateway.status.summary()
        return {
            "status": "ok" if summary["healthy"] else "degraded",
            "zeroCostMode": summary["zeroCostMode"],
            "operations": {name: op["servable"] for name, op in summary["operations"].items()},
        }

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return metrics_response()

    return app


app = create_app()

import asyncio
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from rentai.core.config import settings

# Override settings for tests
settings.app_env = "development"
settings.sentry_dsn = ""
settings.openai_api_key = ""
settings.gemini_api_key = ""
settings.deepseek_api_key = ""
settings.ai_zero_cost_mode = True

from rentai.core.rate_limit import limiter  # noqa: E402
from rentai.gateway.adapters import ALL_OPERATIONS, AdapterError, BaseProviderAdapter  # noqa: E402
from rentai.gateway.cache import ResultCache  # noqa: E402
from rentai.gateway.gateway import AiGateway  # noqa: E402
from rentai.gateway.types import AdapterSuccess, FailureKind, GatewayConfig, Operation  # noqa: E402
from rentai.main import create_app  # noqa: E402

# Rate limits are exercised by slowapi itself, not by the API tests
limiter.enabled = False


class FakeClock:
    """Manually advanced monotonic clock for cache TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAdapter(BaseProviderAdapter):
    """In-memory adapter with a scripted outcome; records every call."""

    def __init__(
        self,
        name: str,
        value="ok",
        failure: FailureKind | None = None,
        paid: bool = True,
        capabilities: frozenset[Operation] = ALL_OPERATIONS,
        delay: float = 0.0,
        exception: Exception | None = None,
    ):
        super().__init__(api_key="test-key", model=f"{name}-fake")
        self.name = name
        self.value = value
        self.failure = failure
        self.paid = paid
        self.capabilities = capabilities
        self.delay = delay
        self.exception = exception
        self.calls: list[Operation] = []

    async def _execute(self, operation, params):
        self.calls.append(operation)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exception is not None:
            raise self.exception
        if self.failure is not None:
            raise AdapterError(self.failure, f"{self.name} failed", "FAKE")
        value = self.value(params) if callable(self.value) else self.value
        return AdapterSuccess(value=value, model=self.model)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_adapter():
    return FakeAdapter


@pytest.fixture
def fake_adapters() -> list[FakeAdapter]:
    """custom (free) → deepseek → gemini → openai, all healthy."""
    return [
        FakeAdapter("custom", value="from custom", paid=False),
        FakeAdapter("deepseek", value="from deepseek"),
        FakeAdapter("gemini", value="from gemini"),
        FakeAdapter("openai", value="from openai"),
    ]


@pytest.fixture
def gateway(fake_adapters: list[FakeAdapter], clock: FakeClock) -> AiGateway:
    config = GatewayConfig(zero_cost_mode=False)
    cache = ResultCache(ttl_seconds=config.cache_ttl_seconds, max_entries=config.cache_max_entries, clock=clock)
    return AiGateway(config, adapters=fake_adapters, cache=cache)


@pytest.fixture
def builtin_gateway() -> AiGateway:
    """Gateway as deployed: built from settings, zero-cost mode, custom engine only."""
    return AiGateway.from_settings(settings)


@pytest.fixture
async def client(gateway: AiGateway) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=create_app(gateway))
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def builtin_client(builtin_gateway: AiGateway) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=create_app(builtin_gateway))
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

"""AI Operation Gateway.

Routes abstract AI operations to interchangeable provider adapters with:
  - Provider Adapters (custom engine, DeepSeek, Gemini, OpenAI)
  - Provider Registry (priority order, runtime toggles, zero-cost mode)
  - Failure Simulator (deterministic fallback testing)
  - Operation Dispatcher (priority-ordered fallback loop)
  - Result Cache (TTL memoization for idempotent operations)
  - Status Reporter (configuration-derived availability)
"""

from rentai.gateway.errors import AllProvidersFailed, GatewayError, InvalidInput, NoProviderConfigured
from rentai.gateway.gateway import AiGateway
from rentai.gateway.types import FailureKind, GatewayConfig, Operation, SimulationPolicy

__all__ = [
    "AiGateway",
    "AllProvidersFailed",
    "FailureKind",
    "GatewayConfig",
    "GatewayError",
    "InvalidInput",
    "NoProviderConfigured",
    "Operation",
    "SimulationPolicy",
]

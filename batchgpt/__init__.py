"""batchgpt: resilience and orchestration layer for LLM completion calls."""

from batchgpt.gateway.client import BatchGpt
from batchgpt.gateway.errors import (
    ConfigurationError,
    GatewayError,
    ModerationVeto,
    TransportError,
    TransportTimeout,
    ValidationFailure,
)
from batchgpt.gateway.retry import exponential_backoff
from batchgpt.gateway.types import (
    AttemptRecord,
    BatchResult,
    ComputedDelay,
    FixedDelay,
    FunctionSpec,
    OrchestrationResult,
)

__version__ = "0.4.0"

__all__ = [
    "AttemptRecord",
    "BatchGpt",
    "BatchResult",
    "ComputedDelay",
    "ConfigurationError",
    "FixedDelay",
    "FunctionSpec",
    "GatewayError",
    "ModerationVeto",
    "OrchestrationResult",
    "TransportError",
    "TransportTimeout",
    "ValidationFailure",
    "exponential_backoff",
]

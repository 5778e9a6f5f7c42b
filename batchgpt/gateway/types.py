"""Core types and DTOs for the request orchestration engine."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from batchgpt.gateway.errors import ConfigurationError


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Role(str, Enum):
    """Conversational roles accepted by the completion service."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class AttemptStatus(str, Enum):
    """Outcome of a single attempt."""

    SUCCESS = "success"
    FAILURE = "failure"


class RequestState(str, Enum):
    """Lifecycle of one logical request inside the orchestrator."""

    PENDING = "pending"
    ATTEMPTING = "attempting"
    WAITING_TO_RETRY = "waiting_to_retry"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    VETOED = "vetoed"  # Moderation short-circuit, zero attempts


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChatMessage:
    """One conversational turn. Content is text or a list of multimodal parts."""

    role: Role
    content: str | tuple[dict[str, Any], ...]

    @property
    def text(self) -> str:
        """Plain-text view of the content (text parts joined for multimodal turns)."""
        if isinstance(self.content, str):
            return self.content
        return " ".join(part.get("text", "") for part in self.content if part.get("type") == "text")

    def to_dict(self) -> dict[str, Any]:
        content = self.content if isinstance(self.content, str) else list(self.content)
        return {"role": self.role.value, "content": content}


# ---------------------------------------------------------------------------
# Retry delay (tagged variant)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FixedDelay:
    """Constant wait between attempts, in seconds."""

    seconds: float = 0.0

    def resolve(self, attempt_index: int) -> float:
        return self.seconds


@dataclass(frozen=True)
class ComputedDelay:
    """Wait computed from the zero-based index of the attempt that just failed."""

    fn: Callable[[int], float]

    def resolve(self, attempt_index: int) -> float:
        value = float(self.fn(attempt_index))
        if value < 0:
            raise ConfigurationError(f"retry_delay returned a negative duration ({value}) for attempt {attempt_index}")
        return value


RetryDelay = Union[FixedDelay, ComputedDelay]


def as_retry_delay(value: RetryDelay | float | int | Callable[[int], float] | None) -> RetryDelay:
    """Normalize caller input (number, callable or variant) into a RetryDelay."""
    if value is None:
        return FixedDelay(0.0)
    if isinstance(value, (FixedDelay, ComputedDelay)):
        return value
    if isinstance(value, bool):
        raise ConfigurationError("retry_delay must be a number or a callable, not a bool")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigurationError(f"retry_delay must be non-negative, got {value}")
        return FixedDelay(float(value))
    if callable(value):
        return ComputedDelay(value)
    raise ConfigurationError(f"retry_delay must be a number or a callable, got {type(value).__name__}")


# ---------------------------------------------------------------------------
# Function calling
# ---------------------------------------------------------------------------


FunctionCallback = Callable[..., Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class FunctionSpec:
    """A function signature offered to the model, plus an optional local callback."""

    signature: dict[str, Any]
    callback: FunctionCallback | None = None

    @property
    def name(self) -> str:
        return self.signature.get("name", "")

    async def invoke(self, arguments: dict[str, Any]) -> Any:
        if self.callback is None:
            return None
        result = self.callback(**arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


# ---------------------------------------------------------------------------
# Resolved options & logical request
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequestOptions:
    """Fully-resolved, immutable options consumed by the orchestrator."""

    model: str = "gpt-3.5-turbo"
    image_model: str | None = None
    image_size: str = "1024x1024"
    temperature: float = 1.0
    timeout: float | None = 300.0
    min_tokens: int | None = None
    min_response_ms: int | None = None
    validate_json: bool = False
    retry_count: int = 0
    retry_delay: RetryDelay = field(default_factory=FixedDelay)
    functions: tuple[FunctionSpec, ...] = ()

    @property
    def max_attempts(self) -> int:
        return self.retry_count + 1

    @property
    def active_model(self) -> str:
        return self.image_model or self.model


@dataclass(frozen=True)
class LogicalRequest:
    """One caller-submitted conversation plus its resolved options."""

    messages: tuple[ChatMessage, ...]
    options: RequestOptions = field(default_factory=RequestOptions)
    key: Any = None  # Prompt text or caller-supplied correlation key
    priority: float = 0.0

    @property
    def prompt_text(self) -> str:
        return self.messages[0].text if self.messages else ""


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModerationVerdict:
    """Classification of a prompt by the moderation service."""

    flagged: bool = False
    categories: tuple[str, ...] = ()  # Categories whose score met the threshold
    scores: dict[str, float] = field(default_factory=dict)

    @property
    def vetoes(self) -> bool:
        return self.flagged or bool(self.categories)

    def to_dict(self) -> dict:
        return {"flagged": self.flagged, "categories": list(self.categories), "scores": dict(self.scores)}


# ---------------------------------------------------------------------------
# Attempt history & results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AttemptRecord:
    """One element of a logical request's history."""

    attempt: int  # Zero-based
    status: AttemptStatus
    error: str | None = None
    response: dict[str, Any] | None = None  # Raw (or partial) body from the service
    content: Any = None  # Message text, parsed function arguments or image URL
    function_result: Any = None
    tokens: int | None = None
    response_time_ms: int = 0
    moderation: ModerationVerdict | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == AttemptStatus.SUCCESS

    @property
    def time_per_token(self) -> int | None:
        if not self.tokens:
            return None
        return round(self.response_time_ms / self.tokens)

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dict for logging/storage."""
        return {
            "attempt": self.attempt,
            "status": self.status.value,
            "error": self.error,
            "response": self.response,
            "content": self.content,
            "function_result": self.function_result,
            "tokens": self.tokens,
            "response_time_ms": self.response_time_ms,
            "time_per_token": self.time_per_token,
            "moderation": self.moderation.to_dict() if self.moderation else None,
        }


@dataclass(frozen=True)
class OrchestrationResult:
    """Terminal outcome of one logical request.

    ``error`` is None iff the last attempt succeeded. ``history`` is None when
    the request never reached the attempt loop (moderation veto).
    Unpacks as ``error, response, history``.
    """

    error: str | None
    final_response: AttemptRecord | None
    history: list[AttemptRecord] | None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def __iter__(self) -> Iterator[Any]:
        return iter((self.error, self.final_response, self.history))


@dataclass(frozen=True)
class BatchItemResult:
    """An OrchestrationResult paired with its submission index and key."""

    index: int
    key: Any
    result: OrchestrationResult


@dataclass(frozen=True)
class BatchResult:
    """Results of a batch, ordered by submission index."""

    items: tuple[BatchItemResult, ...]

    def __len__(self) -> int:
        return len(self.items)

    def __getitem__(self, index: int) -> BatchItemResult:
        return self.items[index]

    @property
    def errors(self) -> list[str] | None:
        """Errors of every failed item, or None if every item succeeded."""
        errors = [item.result.error for item in self.items if item.result.error is not None]
        return errors or None

    @property
    def responses(self) -> list[AttemptRecord | None]:
        return [item.result.final_response for item in self.items]

    @property
    def raw(self) -> list[OrchestrationResult]:
        return [item.result for item in self.items]

    def to_legacy(self) -> tuple[list[str] | None, list[AttemptRecord | None], list[OrchestrationResult]]:
        """The three-array form: ``errors, responses, raw_responses``."""
        return self.errors, self.responses, self.raw

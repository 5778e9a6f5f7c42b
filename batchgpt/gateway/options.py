"""Layered request configuration.

Instance-level defaults (GatewayDefaults, usually built from Settings) are
merged with call-level and item-level overrides at the API boundary, producing
one frozen RequestOptions per logical request. Shared defaults are never
mutated. Every caller-supplied value passes through a pydantic schema here;
validation problems surface as ConfigurationError before any attempt starts.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from batchgpt.core.config import Settings
from batchgpt.gateway.errors import ConfigurationError
from batchgpt.gateway.types import (
    ChatMessage,
    FunctionSpec,
    LogicalRequest,
    RequestOptions,
    Role,
    as_retry_delay,
)


# ---------------------------------------------------------------------------
# Instance-level defaults
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GatewayDefaults:
    """Defaults shared by every request issued through one client."""

    options: RequestOptions = field(default_factory=RequestOptions)
    concurrency: int = 1
    moderation: bool = False
    moderation_threshold: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> GatewayDefaults:
        options = RequestOptions(
            model=settings.model,
            image_model=settings.image_model,
            image_size=settings.image_size,
            temperature=settings.temperature,
            timeout=settings.timeout_seconds,
            min_tokens=settings.min_tokens,
            min_response_ms=settings.min_response_ms,
            validate_json=settings.validate_json,
            retry_count=settings.retry_count,
            retry_delay=as_retry_delay(settings.retry_delay_seconds),
        )
        return cls(
            options=options,
            concurrency=settings.concurrency,
            moderation=settings.moderation,
            moderation_threshold=settings.moderation_threshold,
        )


# ---------------------------------------------------------------------------
# Boundary schemas
# ---------------------------------------------------------------------------


class RequestOverrides(BaseModel):
    """Per-call or per-item option overrides. Unset fields inherit."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    model: str | None = Field(None, min_length=1)
    image_model: str | None = None
    image_size: str | None = None
    temperature: float | None = Field(None, ge=0, le=2)
    timeout: float | None = Field(None, ge=0)  # Explicit None disables the timeout
    min_tokens: int | None = Field(None, ge=0)
    min_response_ms: int | None = Field(None, ge=0)
    validate_json: bool | None = None
    retry_count: int | None = Field(None, ge=0)
    retry_delay: Any = None
    functions: list[Any] | None = None  # Normalized to FunctionSpec below

    @field_validator("retry_delay")
    @classmethod
    def _check_retry_delay(cls, value: Any) -> Any:
        if value is None:
            return None
        try:
            return as_retry_delay(value)
        except ConfigurationError as e:
            raise ValueError(str(e)) from e

    @field_validator("functions", mode="before")
    @classmethod
    def _check_functions(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, (list, tuple)):
            raise ValueError("functions should be a list")
        specs = []
        for item in value:
            if isinstance(item, FunctionSpec):
                specs.append(item)
            elif isinstance(item, Mapping) and isinstance(item.get("signature"), Mapping):
                callback = item.get("callback")
                if callback is not None and not callable(callback):
                    raise ValueError("function callback must be callable")
                specs.append(FunctionSpec(signature=dict(item["signature"]), callback=callback))
            else:
                raise ValueError("each function needs a 'signature' mapping and an optional 'callback'")
        return specs


class ChatMessageIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Role
    content: str | list[dict[str, Any]]


class BatchItemIn(BaseModel):
    """One entry of a parallel call: a prompt or a conversation plus options."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    content: str | None = None
    messages: list[ChatMessageIn] | None = None
    options: dict[str, Any] | None = None
    key: Any = None
    priority: float | None = None


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "value"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def parse_overrides(raw: RequestOverrides | Mapping[str, Any] | None) -> RequestOverrides:
    """Validate caller overrides, raising ConfigurationError on bad input."""
    if raw is None:
        return RequestOverrides()
    if isinstance(raw, RequestOverrides):
        return raw
    try:
        return RequestOverrides.model_validate(dict(raw))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid request options: {_format_validation_error(e)}") from e


def resolve_options(base: RequestOptions, *layers: RequestOverrides | Mapping[str, Any] | None) -> RequestOptions:
    """Apply override layers in order over ``base`` and return a new RequestOptions."""
    resolved = base
    for layer in layers:
        overrides = parse_overrides(layer)
        changes: dict[str, Any] = {}
        for name in overrides.model_fields_set:
            value = getattr(overrides, name)
            if value is None and name != "timeout":
                continue
            if name == "functions":
                value = tuple(value)
            changes[name] = value
        if changes:
            resolved = dataclasses.replace(resolved, **changes)
    return resolved


def build_messages(
    messages: list[ChatMessage | Mapping[str, Any]] | None = None,
    prompt: str | None = None,
) -> tuple[ChatMessage, ...]:
    """Normalize ``messages`` (or a bare ``prompt``) into ChatMessage turns."""
    if messages is None:
        if prompt is None:
            raise ConfigurationError("Either 'messages' or 'prompt' must be provided")
        if not isinstance(prompt, str) or not prompt:
            raise ConfigurationError("Invalid 'prompt' parameter. It should be a non-empty string.")
        return (ChatMessage(role=Role.USER, content=prompt),)

    if not isinstance(messages, (list, tuple)) or len(messages) == 0:
        raise ConfigurationError("Invalid 'messages' parameter. It should be a non-empty list.")

    result: list[ChatMessage] = []
    for message in messages:
        if isinstance(message, ChatMessage):
            result.append(message)
            continue
        try:
            parsed = ChatMessageIn.model_validate(message)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid message: {_format_validation_error(e)}") from e
        content = parsed.content if isinstance(parsed.content, str) else tuple(parsed.content)
        result.append(ChatMessage(role=parsed.role, content=content))
    return tuple(result)


def build_request(
    messages: tuple[ChatMessage, ...],
    options: RequestOptions,
    key: Any = None,
    priority: float = 0.0,
) -> LogicalRequest:
    """Assemble an immutable LogicalRequest, checking cross-field rules."""
    if options.image_model and not messages[0].text:
        raise ConfigurationError("Image generation needs a text prompt in the first message")
    if options.image_model and options.functions:
        raise ConfigurationError("functions cannot be used with image generation")
    return LogicalRequest(
        messages=messages,
        options=options,
        key=messages[0].text if key is None else key,
        priority=priority,
    )


def parse_batch_item(item: Any, index: int) -> tuple[tuple[ChatMessage, ...], dict[str, Any] | None, Any, float]:
    """Split one parallel item into ``messages, overrides, key, priority``."""
    if isinstance(item, str):
        return build_messages(prompt=item), None, item, 0.0

    if not isinstance(item, Mapping):
        raise ConfigurationError(f"Item {index}: expected a string or a mapping, got {type(item).__name__}")
    try:
        parsed = BatchItemIn.model_validate(dict(item))
    except ValidationError as e:
        raise ConfigurationError(f"Item {index}: {_format_validation_error(e)}") from e

    if parsed.messages is not None:
        messages = build_messages(messages=[m.model_dump() for m in parsed.messages])
    elif parsed.content is not None:
        messages = build_messages(prompt=parsed.content)
    else:
        raise ConfigurationError(f"Item {index}: needs 'content' or 'messages'")

    key = parsed.key if parsed.key is not None else messages[0].text
    return messages, parsed.options, key, parsed.priority or 0.0

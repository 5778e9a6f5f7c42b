"""Response Validator: decides whether a received completion is usable.

Pure functions, no I/O. Checks run in a fixed order and the first violated
one raises ValidationFailure:
  1. JSON well-formedness (only when requested, never for images)
  2. Latency floor (response_time_ms <= min_response_ms rejects)
  3. Token floor (tokens <= min_tokens rejects)

A floor of None or 0 is treated as unset.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from batchgpt.gateway.errors import ValidationFailure
from batchgpt.gateway.types import FunctionSpec, RequestOptions

logger = logging.getLogger(__name__)


def is_well_formed_json(text: Any) -> bool:
    """Strict JSON parse check."""
    if not isinstance(text, (str, bytes, bytearray)):
        return False
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def parse_json(text: Any) -> Any:
    """Parse a JSON string, raising ValidationFailure when it is not valid."""
    if not isinstance(text, (str, bytes, bytearray)):
        raise ValidationFailure("Input string is an Invalid JSON string")
    try:
        return json.loads(text)
    except ValueError as e:
        raise ValidationFailure("Input string is an Invalid JSON string") from e


def has_minimum_latency(elapsed_ms: int, floor: int | None) -> bool:
    """False when the floor is set and the response arrived at or below it."""
    if not floor:
        return True
    return elapsed_ms > floor


def has_minimum_tokens(token_count: int, floor: int | None) -> bool:
    """False when the floor is set and the response has at most that many tokens."""
    if not floor:
        return True
    return token_count > floor


def extract_token_count(response: Any) -> int:
    """Completion tokens from the provider's usage field; 0 when absent or unparsable."""
    try:
        return int(response["usage"]["completion_tokens"])
    except (KeyError, TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class ValidatedResponse:
    """Output of a successful validation pass."""

    content: Any
    tokens: int
    function_name: str | None = None
    function_arguments: dict[str, Any] | None = None


def _first_message(response: Any) -> dict[str, Any]:
    try:
        message = response["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as e:
        raise ValidationFailure("Malformed completion response", response=response) from e
    if not isinstance(message, dict):
        raise ValidationFailure("Malformed completion response", response=response)
    return message


def _image_url(response: Any) -> str | None:
    try:
        return response["data"][0].get("url")
    except (KeyError, IndexError, TypeError, AttributeError) as e:
        raise ValidationFailure("Malformed image response", response=response) from e


def check_function_call(message: dict[str, Any], response: Any = None) -> tuple[str, dict[str, Any]]:
    """Extract the called function name and its parsed, non-empty arguments."""
    function_call = message.get("function_call")
    if not function_call:
        raise ValidationFailure("Not a function call", response=response)

    try:
        arguments = parse_json(function_call.get("arguments"))
    except ValidationFailure as e:
        raise ValidationFailure(str(e), response=response) from e

    if not isinstance(arguments, dict) or not arguments:
        raise ValidationFailure("Empty response", response=response)
    return function_call.get("name", ""), arguments


def validate_response(
    response: Any,
    elapsed_ms: int,
    options: RequestOptions,
) -> ValidatedResponse:
    """Run the ordered quality checks over a raw completion.

    Returns the extracted content and token count, or raises ValidationFailure
    carrying the raw response.
    """
    function_name: str | None = None
    function_arguments: dict[str, Any] | None = None

    if options.image_model:
        content: Any = _image_url(response)
    else:
        message = _first_message(response)
        if options.functions:
            function_name, function_arguments = check_function_call(message, response)
            content = function_arguments
        else:
            content = message.get("content")
            if options.validate_json and not is_well_formed_json(content):
                raise ValidationFailure("Invalid JSON response", response=response)

    if not has_minimum_latency(elapsed_ms, options.min_response_ms):
        raise ValidationFailure(
            f"Response is unreliable. Response Time {elapsed_ms} <= min_response_ms {options.min_response_ms}",
            response=response,
        )

    tokens = extract_token_count(response)
    if not has_minimum_tokens(tokens, options.min_tokens):
        raise ValidationFailure(
            f"Response is unreliable. Tokens received {tokens} <= min_tokens {options.min_tokens}",
            response=response,
        )

    return ValidatedResponse(
        content=content,
        tokens=tokens,
        function_name=function_name,
        function_arguments=function_arguments,
    )


def find_function(functions: tuple[FunctionSpec, ...], name: str | None) -> FunctionSpec | None:
    """Look up the function whose signature name matches the model's call."""
    if not name:
        return None
    for function in functions:
        if function.name == name:
            return function
    logger.debug("Model called unknown function %s", name)
    return None

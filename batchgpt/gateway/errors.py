"""Error taxonomy for the orchestration engine.

Fatal errors (raised before or instead of the attempt loop):
  - ConfigurationError: malformed caller input
  - ModerationVeto: the prompt was flagged by the moderation gate

Retryable failures (caught by the attempt loop, folded into history):
  - TransportTimeout: the remote call did not settle within the timeout
  - TransportError: the remote call rejected or threw
  - ValidationFailure: JSON / latency / token checks failed
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from batchgpt.gateway.types import ModerationVerdict


class GatewayError(Exception):
    """Base class for all orchestration errors."""


class ConfigurationError(GatewayError, ValueError):
    """Raised when caller input cannot produce a valid request."""


class ModerationVeto(GatewayError):
    """Raised when the moderation gate flags a prompt."""

    def __init__(self, verdict: ModerationVerdict):
        categories = ", ".join(verdict.categories)
        super().__init__(f"Prompt was flagged for {categories}")
        self.verdict = verdict


class AttemptFailure(GatewayError):
    """A retryable failure of one attempt.

    ``response`` carries whatever body was received before the failure, so the
    attempt record can keep it for debugging.
    """

    def __init__(self, message: str, response: dict[str, Any] | None = None):
        super().__init__(message)
        self.response = response


class TransportTimeout(AttemptFailure):
    """The remote call did not resolve before the per-attempt timeout."""

    def __init__(self, message: str = "Request timed out", response: dict[str, Any] | None = None):
        super().__init__(message, response)


class TransportError(AttemptFailure):
    """The remote call was rejected or raised."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        error_code: str = "",
        response: dict[str, Any] | None = None,
    ):
        super().__init__(message, response)
        self.status_code = status_code
        self.error_code = error_code


class ValidationFailure(AttemptFailure):
    """A received response did not pass the quality checks."""

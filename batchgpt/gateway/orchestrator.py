"""Request Orchestrator: drives one logical request to a terminal state.

Flow per logical request:
  1. Moderation gate (optional, single-message requests only)
  2. Attempt loop: model call under a per-attempt timeout
  3. Response validation (JSON → latency floor → token floor)
  4. Success/failure bookkeeping into an append-only history
  5. Delay between a failed attempt and the next one
  6. Terminal state: SUCCEEDED on first success, EXHAUSTED when the budget is spent

States: PENDING → ATTEMPTING → {SUCCEEDED, WAITING_TO_RETRY, EXHAUSTED},
plus VETOED when the moderation gate blocks the prompt (zero attempts).
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from batchgpt.core.metrics import record_attempt, record_outcome
from batchgpt.gateway.errors import (
    AttemptFailure,
    ConfigurationError,
    ModerationVeto,
    TransportError,
    TransportTimeout,
)
from batchgpt.gateway.moderation import ModerationGate
from batchgpt.gateway.retry import RetryPolicy
from batchgpt.gateway.types import (
    AttemptRecord,
    AttemptStatus,
    LogicalRequest,
    ModerationVerdict,
    OrchestrationResult,
    RequestState,
)
from batchgpt.gateway.validators import find_function, validate_response
from batchgpt.gateway.vendor_adapters import BaseCompletionAdapter

TIMEOUT_MESSAGE = "Request timed out"


class RequestOrchestrator:
    """Runs the retry/validation state machine for a single LogicalRequest.

    One instance per logical request; not reusable across requests.

    Usage:
        orchestrator = RequestOrchestrator(request, adapter, moderation_gate=gate)
        result = await orchestrator.run()
        error, response, history = result
    """

    def __init__(
        self,
        request: LogicalRequest,
        adapter: BaseCompletionAdapter,
        moderation_gate: ModerationGate | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.request = request
        self.adapter = adapter
        self.moderation_gate = moderation_gate
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.policy = RetryPolicy(
            retry_count=request.options.retry_count,
            delay=request.options.retry_delay,
            sleep=sleep,
        )
        self.state = RequestState.PENDING
        self.history: list[AttemptRecord] = []

    @property
    def attempts_made(self) -> int:
        return len(self.history)

    def _log_extra(self, attempt: int | None = None) -> dict[str, Any]:
        extra: dict[str, Any] = {"request_key": self.request.key}
        if attempt is not None:
            extra["attempt"] = attempt
        return extra

    async def run(self) -> OrchestrationResult:
        """Drive the request to a terminal state and return its result.

        Moderation service failures propagate; every model-call failure is
        folded into the history.
        """
        if self.state != RequestState.PENDING:
            raise RuntimeError(f"Orchestrator already ran (state={self.state.value})")

        options = self.request.options
        self.logger.info(
            "Initializing request to (%s) model",
            options.active_model,
            extra=self._log_extra(),
        )
        if options.validate_json and not options.image_model:
            self.logger.warning(
                "validate_json is set; make sure the prompt asks the model for a valid JSON response",
                extra=self._log_extra(),
            )
        self.logger.debug(
            "messages: %s",
            json.dumps([m.to_dict() for m in self.request.messages], ensure_ascii=False, default=str),
        )

        try:
            verdict = await self._moderate()
        except ModerationVeto as veto:
            self.state = RequestState.VETOED
            record_outcome(RequestState.VETOED.value)
            return OrchestrationResult(error=str(veto), final_response=None, history=None)

        for attempt in range(options.max_attempts):
            self.state = RequestState.ATTEMPTING
            record = await self._attempt(attempt, verdict)
            self.history.append(record)

            if record.succeeded:
                self.state = RequestState.SUCCEEDED
                record_outcome(RequestState.SUCCEEDED.value)
                self.logger.info(
                    "Request completed in %d ms after %d attempt(s)",
                    record.response_time_ms,
                    self.attempts_made,
                    extra=self._log_extra(attempt),
                )
                return OrchestrationResult(error=None, final_response=record, history=list(self.history))

            if not self.policy.should_retry(attempt):
                break

            self.state = RequestState.WAITING_TO_RETRY
            try:
                delay = self.policy.delay_for(attempt)
            except ConfigurationError as e:
                return self._exhausted(str(e))
            if delay > 0:
                self.logger.info("Waiting for %.3fs before retrying", delay, extra=self._log_extra(attempt))
            await self.policy.wait(attempt, delay)

        return self._exhausted(self.history[-1].error)

    def _exhausted(self, error: str) -> OrchestrationResult:
        """Finish as EXHAUSTED, keeping every attempt made so far."""
        self.state = RequestState.EXHAUSTED
        record_outcome(RequestState.EXHAUSTED.value)
        last = self.history[-1]
        self.logger.error(
            "Request exhausted after %d attempt(s): %s",
            self.attempts_made,
            error,
            extra=self._log_extra(last.attempt),
        )
        final_response = last if last.response is not None else None
        return OrchestrationResult(error=error, final_response=final_response, history=list(self.history))

    async def _moderate(self) -> ModerationVerdict | None:
        if self.moderation_gate is None or len(self.request.messages) != 1:
            return None
        verdict = await self.moderation_gate.check(self.request.prompt_text)
        self.moderation_gate.enforce(verdict)
        return verdict

    async def _call(self) -> dict[str, Any]:
        options = self.request.options
        if options.image_model:
            self.logger.info("Generating image with %s", options.image_model, extra=self._log_extra())
            return await self.adapter.generate_image(
                model=options.image_model,
                prompt=self.request.prompt_text,
                size=options.image_size,
                n=1,
            )
        functions = [function.signature for function in options.functions] or None
        return await self.adapter.create_chat_completion(
            messages=[m.to_dict() for m in self.request.messages],
            model=options.model,
            temperature=options.temperature,
            functions=functions,
        )

    async def _call_with_timeout(self) -> dict[str, Any]:
        timeout = self.request.options.timeout
        if not timeout:
            return await self._call()
        try:
            return await asyncio.wait_for(self._call(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransportTimeout(TIMEOUT_MESSAGE) from e

    async def _attempt(self, attempt: int, verdict: ModerationVerdict | None) -> AttemptRecord:
        options = self.request.options
        self.logger.info(
            "Sending request to (%s) [attempt: %d/%d]",
            options.active_model,
            attempt + 1,
            options.max_attempts,
            extra=self._log_extra(attempt),
        )
        start = self.clock()
        raw: dict[str, Any] | None = None
        elapsed_ms: int | None = None

        try:
            try:
                raw = await self._call_with_timeout()
            except AttemptFailure:
                raise
            except Exception as e:
                raise TransportError(str(e) or type(e).__name__) from e

            elapsed_ms = int((self.clock() - start) * 1000)
            self.logger.debug("Response: %s", raw)
            validated = validate_response(raw, elapsed_ms, options)

            function_result = None
            if options.functions and not options.validate_json:
                function = find_function(options.functions, validated.function_name)
                if function is not None:
                    try:
                        function_result = await function.invoke(validated.function_arguments or {})
                    except Exception as e:
                        raise AttemptFailure(f"Function {function.name} failed: {e}", response=raw) from e

        except AttemptFailure as e:
            if elapsed_ms is None:
                elapsed_ms = int((self.clock() - start) * 1000)
            record_attempt(options.active_model, AttemptStatus.FAILURE.value, elapsed_ms / 1000)
            self.logger.warning("%s", e, extra=self._log_extra(attempt))
            return AttemptRecord(
                attempt=attempt,
                status=AttemptStatus.FAILURE,
                error=str(e),
                response=e.response if e.response is not None else raw,
                response_time_ms=elapsed_ms,
                moderation=verdict,
            )

        record_attempt(options.active_model, AttemptStatus.SUCCESS.value, elapsed_ms / 1000)
        return AttemptRecord(
            attempt=attempt,
            status=AttemptStatus.SUCCESS,
            response=raw,
            content=validated.content,
            function_result=function_result,
            tokens=validated.tokens,
            response_time_ms=elapsed_ms,
            moderation=verdict,
        )

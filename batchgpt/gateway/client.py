"""BatchGpt: caller-facing API over the orchestration engine.

Main entry point:
  1. Validates and merges options (instance defaults ← call ← item)
  2. Builds immutable LogicalRequests
  3. Runs one through a RequestOrchestrator (request) or many through the
     ConcurrencyDispatcher (parallel)

Usage:
    gpt = BatchGpt(retry_count=2, retry_delay=lambda n: n * 0.1)

    error, response, history = await gpt.request(prompt="What is an LLM?")

    batch = await gpt.parallel(["Translate 'apple'", "Translate 'cat'"], concurrency=2)
    errors, responses, raw = batch.to_legacy()
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from batchgpt.core.config import Settings, settings as default_settings
from batchgpt.gateway.dispatcher import ConcurrencyDispatcher, PriorityFn, ResponseObserver
from batchgpt.gateway.errors import ConfigurationError
from batchgpt.gateway.moderation import ModerationGate
from batchgpt.gateway.options import (
    GatewayDefaults,
    build_messages,
    build_request,
    parse_batch_item,
    resolve_options,
)
from batchgpt.gateway.orchestrator import RequestOrchestrator
from batchgpt.gateway.types import BatchResult, ChatMessage, LogicalRequest, OrchestrationResult
from batchgpt.gateway.vendor_adapters import BaseCompletionAdapter, OpenAIAdapter


class BatchGpt:
    """Resilient front door to an LLM completion service.

    Integrates:
      - options: layered configuration and boundary validation
      - ModerationGate: optional pre-flight veto
      - RequestOrchestrator: retries, timeouts and response validation
      - ConcurrencyDispatcher: bounded, priority-ordered fan-out
    """

    def __init__(
        self,
        adapter: BaseCompletionAdapter | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
        concurrency: int | None = None,
        moderation: bool | None = None,
        moderation_threshold: float | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        **default_overrides: Any,
    ):
        """
        Args:
            adapter: Completion service adapter; an OpenAIAdapter is built from settings when omitted
            settings: Source of instance defaults (falls back to the environment-loaded settings)
            logger: Logger handed to every orchestrator and dispatcher this client creates
            concurrency: Default parallelism for parallel()
            moderation: Enable the moderation gate
            moderation_threshold: Category score at or above which a prompt is vetoed
            sleep: Awaitable used for retry delays (tests pass a fake)
            **default_overrides: Instance-level request options (model, retry_count, ...)
        """
        self.settings = settings or default_settings
        self.logger = logger or logging.getLogger(__name__)

        base = GatewayDefaults.from_settings(self.settings)
        self.defaults = GatewayDefaults(
            options=resolve_options(base.options, default_overrides),
            concurrency=base.concurrency if concurrency is None else concurrency,
            moderation=base.moderation if moderation is None else moderation,
            moderation_threshold=base.moderation_threshold if moderation_threshold is None else moderation_threshold,
        )
        if self.defaults.concurrency < 1:
            raise ConfigurationError(f"concurrency must be >= 1, got {self.defaults.concurrency}")

        self.adapter = adapter or OpenAIAdapter(
            api_key=self.settings.openai_api_key,
            base_url=self.settings.openai_base_url,
        )
        self.moderation_gate = (
            ModerationGate(self.adapter, threshold=self.defaults.moderation_threshold, logger=self.logger)
            if self.defaults.moderation
            else None
        )
        if moderation_threshold is not None and not self.defaults.moderation:
            self.logger.warning("Moderation threshold set but moderation is not enabled, it will be ignored")
        self._sleep_kwargs = {"sleep": sleep} if sleep is not None else {}

    def build_request(
        self,
        messages: list[ChatMessage | Mapping[str, Any]] | None = None,
        prompt: str | None = None,
        key: Any = None,
        priority: float = 0.0,
        **overrides: Any,
    ) -> LogicalRequest:
        """Resolve options and build one immutable LogicalRequest."""
        options = resolve_options(self.defaults.options, overrides)
        return build_request(build_messages(messages, prompt), options, key=key, priority=priority)

    async def request(
        self,
        messages: list[ChatMessage | Mapping[str, Any]] | None = None,
        prompt: str | None = None,
        **overrides: Any,
    ) -> OrchestrationResult:
        """Send one logical request.

        Returns an OrchestrationResult that unpacks as ``error, response, history``.
        ConfigurationError is raised before any attempt; a moderation veto comes
        back as ``(message, None, None)``.
        """
        logical = self.build_request(messages=messages, prompt=prompt, **overrides)
        orchestrator = RequestOrchestrator(
            logical,
            self.adapter,
            moderation_gate=self.moderation_gate,
            logger=self.logger,
            **self._sleep_kwargs,
        )
        return await orchestrator.run()

    async def parallel(
        self,
        items: Sequence[str | Mapping[str, Any]],
        concurrency: int | None = None,
        on_response: ResponseObserver | None = None,
        priority: PriorityFn | None = None,
        **overrides: Any,
    ) -> BatchResult:
        """Send many logical requests with bounded parallelism.

        Items are prompt strings or mappings with ``content``/``messages`` plus
        optional ``options``, ``key`` and ``priority``. Per-item options layer
        over the call-level ``overrides``. Every item is validated before any is
        sent.
        """
        if isinstance(items, (str, bytes)) or not isinstance(items, Sequence):
            raise ConfigurationError("items must be a list of prompts or item mappings")

        call_options = resolve_options(self.defaults.options, overrides)
        requests: list[LogicalRequest] = []
        for index, item in enumerate(items):
            messages, item_overrides, key, item_priority = parse_batch_item(item, index)
            try:
                options = resolve_options(call_options, item_overrides)
            except ConfigurationError as e:
                raise ConfigurationError(f"Item {index}: {e}") from e
            requests.append(build_request(messages, options, key=key, priority=item_priority))

        dispatcher = ConcurrencyDispatcher(
            self.adapter,
            moderation_gate=self.moderation_gate,
            logger=self.logger,
            **self._sleep_kwargs,
        )
        return await dispatcher.run_all(
            requests,
            concurrency=self.defaults.concurrency if concurrency is None else concurrency,
            priority=priority,
            on_response=on_response,
        )

"""Concurrency Dispatcher: bounded fan-out of logical requests.

Each request gets its own RequestOrchestrator. At most ``concurrency``
orchestrators run at once; the rest wait in an admission heap ordered by
priority (higher first) with submission order as the tie-breaker. A slot is
held from admission until the orchestrator reaches a terminal state.

Results come back in submission order. One item's failure never affects its
siblings, and the optional ``on_response`` observer fires exactly once per
item, when that item finishes.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from heapq import heappop, heappush
from typing import Any

from batchgpt.core.metrics import INFLIGHT_REQUESTS
from batchgpt.gateway.errors import ConfigurationError
from batchgpt.gateway.moderation import ModerationGate
from batchgpt.gateway.orchestrator import RequestOrchestrator
from batchgpt.gateway.types import BatchItemResult, BatchResult, LogicalRequest, OrchestrationResult
from batchgpt.gateway.vendor_adapters import BaseCompletionAdapter

ResponseObserver = Callable[[OrchestrationResult, int, Any], Any]
PriorityFn = Callable[[LogicalRequest], float]


@dataclass(order=True)
class _PriorityItem:
    """Wrapper for heap queue ordering."""

    priority: float  # Negated caller priority, so higher values pop first
    sequence: int  # Tie-breaker for FIFO within same priority
    index: int = field(compare=False)
    request: LogicalRequest = field(compare=False)


class ConcurrencyDispatcher:
    """Runs a batch of LogicalRequests with bounded parallelism.

    Usage:
        dispatcher = ConcurrencyDispatcher(adapter)
        batch = await dispatcher.run_all(requests, concurrency=3)
        errors, responses, raw = batch.to_legacy()
    """

    def __init__(
        self,
        adapter: BaseCompletionAdapter,
        moderation_gate: ModerationGate | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.adapter = adapter
        self.moderation_gate = moderation_gate
        self.logger = logger or logging.getLogger(__name__)
        self.sleep = sleep

    def _orchestrator(self, request: LogicalRequest) -> RequestOrchestrator:
        return RequestOrchestrator(
            request,
            self.adapter,
            moderation_gate=self.moderation_gate,
            logger=self.logger,
            sleep=self.sleep,
        )

    async def run_all(
        self,
        requests: Sequence[LogicalRequest],
        concurrency: int = 1,
        priority: PriorityFn | None = None,
        on_response: ResponseObserver | None = None,
    ) -> BatchResult:
        """Execute every request and return results in submission order."""
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
            raise ConfigurationError(f"concurrency must be an integer >= 1, got {concurrency!r}")
        if on_response is not None and not callable(on_response):
            raise ConfigurationError("on_response must be callable")
        if not requests:
            return BatchResult(items=())

        heap: list[_PriorityItem] = []
        for index, request in enumerate(requests):
            value = priority(request) if priority is not None else request.priority
            heappush(heap, _PriorityItem(priority=-float(value), sequence=index, index=index, request=request))

        loop = asyncio.get_running_loop()
        futures: list[asyncio.Future[OrchestrationResult]] = [loop.create_future() for _ in requests]

        self.logger.info(
            "Dispatching %d requests (concurrency=%d)",
            len(requests),
            concurrency,
        )

        # Observer calls never hold a worker slot
        notifications: list[asyncio.Task[None]] = []

        async def _worker() -> None:
            while heap:
                item = heappop(heap)
                result = await self._execute(item)
                futures[item.index].set_result(result)
                if on_response is not None:
                    notifications.append(asyncio.create_task(self._notify(on_response, result, item)))

        workers = min(concurrency, len(requests))
        await asyncio.gather(*(_worker() for _ in range(workers)))
        await asyncio.gather(*notifications)

        items = tuple(
            BatchItemResult(index=index, key=request.key, result=futures[index].result())
            for index, request in enumerate(requests)
        )
        batch = BatchResult(items=items)
        failed = len(batch.errors or [])
        self.logger.info(
            "All requests completed: %d succeeded, %d failed",
            len(items) - failed,
            failed,
        )
        return batch

    async def _execute(self, item: _PriorityItem) -> OrchestrationResult:
        with INFLIGHT_REQUESTS.track_inprogress():
            try:
                return await self._orchestrator(item.request).run()
            except Exception as e:
                # Moderation outages and other fatal errors stay with their item
                self.logger.exception("Request %d failed before completing: %s", item.index, e)
                return OrchestrationResult(error=str(e) or type(e).__name__, final_response=None, history=None)

    async def _notify(self, on_response: ResponseObserver | None, result: OrchestrationResult, item: _PriorityItem):
        if on_response is None:
            return
        try:
            outcome = on_response(result, item.index, item.request.key)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            self.logger.exception("on_response callback raised for item %d", item.index)

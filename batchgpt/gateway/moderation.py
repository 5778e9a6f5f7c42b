"""Moderation Gate: optional pre-flight classification of a prompt.

One remote call per logical request. A verdict that is flagged, or that has
any category scoring at or above the threshold, vetoes the request before any
model call is made. Failures of the classification call itself propagate; they
are not part of the retry loop.
"""

from __future__ import annotations

import logging

from batchgpt.gateway.errors import ModerationVeto
from batchgpt.gateway.types import ModerationVerdict
from batchgpt.gateway.vendor_adapters import BaseCompletionAdapter

DEFAULT_THRESHOLD = 0.5


class ModerationGate:
    """Classifies prompts via the adapter's moderation endpoint.

    Usage:
        gate = ModerationGate(adapter, threshold=0.5)
        verdict = await gate.check("some prompt")
        gate.enforce(verdict)  # raises ModerationVeto when flagged
    """

    def __init__(
        self,
        adapter: BaseCompletionAdapter,
        threshold: float = DEFAULT_THRESHOLD,
        logger: logging.Logger | None = None,
    ):
        self.adapter = adapter
        self.threshold = threshold
        self.logger = logger or logging.getLogger(__name__)
        if not threshold:
            self.logger.error("Moderation is enabled, moderation_threshold should also be set")

    def verdict_from_result(self, result: dict) -> ModerationVerdict:
        """Build a verdict from a raw moderation result."""
        scores: dict[str, float] = {}
        for name, score in (result.get("category_scores") or {}).items():
            try:
                scores[name] = float(score)
            except (TypeError, ValueError):
                continue

        categories = result.get("categories") or {}
        flagged_categories = tuple(name for name in categories if scores.get(name, 0.0) >= self.threshold)
        return ModerationVerdict(
            flagged=bool(result.get("flagged", False)),
            categories=flagged_categories,
            scores=scores,
        )

    async def check(self, text: str) -> ModerationVerdict:
        """Classify text. Raises whatever the adapter raises."""
        self.logger.info("Sending prompt to moderation, threshold set to %s", self.threshold)
        result = await self.adapter.moderate(text)
        verdict = self.verdict_from_result(result)
        self.logger.debug("Moderation result received: %s", verdict.to_dict())
        return verdict

    def enforce(self, verdict: ModerationVerdict) -> None:
        """Raise ModerationVeto when the verdict blocks the request."""
        if verdict.vetoes:
            veto = ModerationVeto(verdict)
            self.logger.warning("%s", veto)
            raise veto

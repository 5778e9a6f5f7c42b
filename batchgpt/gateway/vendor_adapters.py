"""Vendor Adapters: protocol-level calls to the remote model service.

The orchestration engine treats these as opaque async functions. Each adapter
exposes three calls and returns the vendor's JSON body unchanged:
  - create_chat_completion: chat messages → {choices, usage}
  - generate_image: prompt → {data: [{url}]}
  - moderate: text → {flagged, categories, category_scores}

HTTP failures are mapped onto the engine's retryable taxonomy
(TransportTimeout / TransportError) so the retry loop stays transport-agnostic.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from batchgpt.gateway.errors import TransportError, TransportTimeout

logger = logging.getLogger(__name__)


class BaseCompletionAdapter(ABC):
    """Base class for completion service adapters."""

    @abstractmethod
    async def create_chat_completion(
        self,
        messages: list[dict[str, Any]],
        model: str,
        temperature: float,
        functions: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Send a chat completion request and return the raw body."""
        ...

    @abstractmethod
    async def generate_image(self, model: str, prompt: str, size: str = "1024x1024", n: int = 1) -> dict[str, Any]:
        """Send an image generation request and return the raw body."""
        ...

    @abstractmethod
    async def moderate(self, text: str) -> dict[str, Any]:
        """Classify text and return the first moderation result."""
        ...


# ---------------------------------------------------------------------------
# OpenAI Adapter
# ---------------------------------------------------------------------------


class OpenAIAdapter(BaseCompletionAdapter):
    """OpenAI REST adapter (chat completions, images, moderations)."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        http_timeout: float = 600.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.http_timeout = http_timeout

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.debug("POST %s", url)
        try:
            async with httpx.AsyncClient(timeout=self.http_timeout) as client:
                resp = await client.post(url, json=payload, headers=self._headers())

            if resp.status_code == 429:
                raise TransportError("Rate limited by OpenAI", status_code=429, error_code="429")

            resp.raise_for_status()
            return resp.json()

        except httpx.TimeoutException as e:
            raise TransportTimeout() from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                str(e),
                status_code=e.response.status_code,
                error_code=str(e.response.status_code),
                response=_safe_json(e.response),
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

    async def create_chat_completion(
        self,
        messages: list[dict[str, Any]],
        model: str,
        temperature: float,
        functions: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if functions:
            payload["functions"] = functions
        return await self._post("/chat/completions", payload)

    async def generate_image(self, model: str, prompt: str, size: str = "1024x1024", n: int = 1) -> dict[str, Any]:
        payload = {"model": model, "prompt": prompt, "size": size, "n": n}
        return await self._post("/images/generations", payload)

    async def moderate(self, text: str) -> dict[str, Any]:
        data = await self._post("/moderations", {"input": text})
        results = data.get("results") or []
        if not results:
            raise TransportError("Moderation response contained no results", response=data)
        return results[0]


def _safe_json(resp: httpx.Response) -> dict[str, Any] | None:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None

"""Outbound call to the text-generation service."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from config import Settings
from reply_extraction import extract_reply
from utils import LOGGER, UpstreamError


@dataclass(frozen=True)
class GenerationOptions:
    temperature: float = 0.2
    max_output_tokens: int = 512


DEFAULT_OPTIONS = GenerationOptions()


class GenAIClient:
    """Async client for the generation endpoint; one instance per application."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.url = settings.api_url
        self.model = settings.model
        self._client = httpx.AsyncClient(
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {settings.api_key}",
            },
            timeout=httpx.Timeout(settings.timeout),
            transport=transport,
        )

    def _payload(self, prompt: str, options: GenerationOptions) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": prompt,
            "temperature": options.temperature,
            "max_output_tokens": options.max_output_tokens,
        }

    async def generate(self, prompt: str, options: GenerationOptions = DEFAULT_OPTIONS) -> str:
        try:
            response = await self._client.post(self.url, json=self._payload(prompt, options))
        except httpx.HTTPError as exc:
            LOGGER.error("GenAI request failed: %s", exc, extra={"upstream_url": self.url})
            raise UpstreamError(str(exc) or exc.__class__.__name__) from exc

        if not response.is_success:
            LOGGER.error(
                "GenAI error: %s",
                response.text,
                extra={"upstream_status": response.status_code, "upstream_url": self.url},
            )
            raise UpstreamError(response.text, upstream_status=response.status_code)

        return extract_reply(response.json())

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["GenAIClient", "GenerationOptions", "DEFAULT_OPTIONS"]

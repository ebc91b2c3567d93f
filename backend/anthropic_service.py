"""
Anthropic Messages API client used by the conversation loop.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from errors import LLMAuthError, LLMRequestError, LLMTransientError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = (429, 500, 502, 503, 504, 529)


@dataclass
class LLMResponse:
    content: list[dict]
    stop_reason: str
    usage: dict = field(default_factory=dict)

    @property
    def text(self) -> str:
        return "\n\n".join(
            block.get("text", "") for block in self.content if block.get("type") == "text" and block.get("text")
        )

    @property
    def tool_uses(self) -> list[dict]:
        return [block for block in self.content if block.get("type") == "tool_use"]


class AnthropicService:
    """Explicit LLM handle; constructed once at startup and injected."""

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    @staticmethod
    def _parse_retry_after(response: httpx.Response) -> float:
        ra = response.headers.get("retry-after", "")
        if ra:
            try:
                return float(ra)
            except ValueError:
                pass
        return 2.0

    async def create_message(
        self,
        system: str,
        messages: list[dict],
        tools: Optional[list[dict]] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        if not self.settings.anthropic_api_key:
            raise LLMAuthError("ANTHROPIC_API_KEY is not configured")

        payload = {
            "model": self.settings.anthropic_model,
            "max_tokens": max_tokens or self.settings.anthropic_max_tokens,
            "system": system,
            "messages": messages,
        }
        if tools:
            payload["tools"] = tools
        headers = {
            "x-api-key": self.settings.anthropic_api_key,
            "anthropic-version": self.settings.anthropic_version,
            "content-type": "application/json",
        }
        attempts = max(1, self.settings.llm_max_retry_attempts)
        backoff_base = self.settings.llm_retry_backoff_base_sec

        async with httpx.AsyncClient(timeout=self.settings.llm_timeout_sec, transport=self._transport) as client:
            for attempt in range(attempts):
                last_attempt = attempt == attempts - 1
                try:
                    response = await client.post(self.settings.anthropic_api_url, json=payload, headers=headers)
                except httpx.TransportError as exc:
                    logger.warning("llm.network_error", extra={"attempt": attempt + 1, "error": str(exc)})
                    if last_attempt:
                        raise LLMTransientError(f"network error: {exc}") from exc
                    await asyncio.sleep(backoff_base * (attempt + 1))
                    continue

                if response.status_code == 200:
                    data = response.json()
                    return LLMResponse(
                        content=data.get("content") or [],
                        stop_reason=data.get("stop_reason") or "end_turn",
                        usage=data.get("usage") or {},
                    )
                if response.status_code in (401, 403):
                    raise LLMAuthError(f"http={response.status_code}")
                if response.status_code in _RETRYABLE_STATUS and not last_attempt:
                    if response.status_code == 429:
                        backoff = max(self._parse_retry_after(response), backoff_base * (2 ** attempt))
                    else:
                        backoff = backoff_base * (attempt + 1)
                    logger.warning(
                        "llm.retry",
                        extra={"attempt": attempt + 1, "status": response.status_code, "backoff": backoff},
                    )
                    await asyncio.sleep(backoff)
                    continue
                if response.status_code in _RETRYABLE_STATUS:
                    raise LLMTransientError(f"http={response.status_code} after {attempt + 1} attempts")
                raise LLMRequestError(f"http={response.status_code} body={response.text[:300]}")

        raise LLMTransientError("retries exhausted")

    async def complete_text(self, system: str, prompt: str, max_tokens: int = 1024) -> str:
        """One-shot prompt without tools; returns the joined text blocks."""
        response = await self.create_message(
            system=system,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
        )
        return response.text.strip()

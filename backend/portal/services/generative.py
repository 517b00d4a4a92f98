from __future__ import annotations

import logging
from typing import Protocol

import httpx

from portal.core.config import settings
from portal.core.errors import SourceTransportError

log = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an examiner for a university finance department. "
    "Return ONLY a JSON array without Markdown or commentary. "
    'Each element must be {"text": string, "options": [4 strings], "correctAnswer": integer index 0-3}. '
    "Vary the position of the correct option and keep distractors plausible."
)


class GenerativeTextService(Protocol):
    @property
    def available(self) -> bool: ...

    async def generate(self, prompt: str) -> str: ...


class ChatCompletionsTextService:
    """OpenAI-compatible chat completions endpoint (OpenRouter by default)."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        temperature: float | None = None,
        enabled: bool | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = ((base_url if base_url is not None else settings.ai_base_url) or "").strip().rstrip("/")
        self.model = ((model if model is not None else settings.ai_model) or "").strip()
        self.api_key = ((api_key if api_key is not None else settings.ai_api_key) or "").strip()
        self.temperature = float(temperature if temperature is not None else settings.ai_temperature)
        self.enabled = bool(settings.ai_synthesis_enabled if enabled is None else enabled)
        self._transport = transport

    @property
    def available(self) -> bool:
        return self.enabled and bool(self.api_key) and bool(self.base_url) and bool(self.model)

    async def generate(self, prompt: str) -> str:
        if not self.available:
            raise SourceTransportError("generative service is disabled or not configured")

        payload = {
            "model": self.model,
            "stream": False,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        # The caller enforces the overall deadline; these only bound individual phases.
        timeout = httpx.Timeout(connect=3.0, read=30.0, write=10.0, pool=3.0)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                r = await client.post(self.base_url + "/chat/completions", json=payload, headers=headers)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPStatusError as e:
            body_snip = (e.response.text or "")[:300]
            raise SourceTransportError(f"HTTP_{e.response.status_code}: {body_snip}", e) from e
        except (httpx.HTTPError, ValueError) as e:
            raise SourceTransportError(f"request_failed:{type(e).__name__}", e) from e

        content = None
        choices = (data or {}).get("choices") if isinstance(data, dict) else None
        if choices:
            content = ((choices[0] or {}).get("message") or {}).get("content")
        if not isinstance(content, str):
            raise SourceTransportError("response has no message content")
        return content

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict

import aiohttp

from ..errors import ConfigurationError, TransientError
from ..types import ModelRequest
from .base import AUTH_HTTP_STATUSES, TRANSIENT_HTTP_STATUSES


class OpenRouterClient:
    """OpenAI-compatible chat completions over OpenRouter."""

    name = "openrouter"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        base_url: str = "https://openrouter.ai/api/v1",
        referer: str | None = None,
        title: str | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.temperature = temperature
        self.referer = referer
        self.title = title
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self.referer:
            headers["HTTP-Referer"] = self.referer
        if self.title:
            headers["X-Title"] = self.title
        return headers

    def _build_payload(self, request: ModelRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "temperature": self.temperature if request.temperature is None else request.temperature,
        }
        if request.max_output_tokens:
            payload["max_tokens"] = int(request.max_output_tokens)
        return payload

    @staticmethod
    def _extract_content(data: Dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            raise RuntimeError("model returned no choices")
        message = (choices[0] or {}).get("message") or {}
        content = message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            joined = "".join(
                str(item["text"]) for item in content if isinstance(item, dict) and isinstance(item.get("text"), str)
            )
            if joined:
                return joined
        raise RuntimeError("model returned empty content")

    async def complete(self, request: ModelRequest) -> str:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        try:
            async with self._session.post(
                self._endpoint(),
                json=self._build_payload(request),
                headers=self._headers(),
            ) as response:
                text = await response.text()
                status = response.status
        except asyncio.TimeoutError as exc:
            raise TransientError("OpenRouter request timed out", stage="model") from exc
        except aiohttp.ClientError as exc:
            raise TransientError(f"OpenRouter request failed: {exc}", stage="model") from exc

        if status in AUTH_HTTP_STATUSES:
            raise ConfigurationError(f"OpenRouter rejected credentials ({status})", stage="model")
        if status in TRANSIENT_HTTP_STATUSES:
            raise TransientError(f"OpenRouter retriable error {status}: {text}", stage="model")
        if status != 200:
            raise RuntimeError(f"OpenRouter error {status}: {text}")

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"OpenRouter returned invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise RuntimeError("OpenRouter returned a non-object payload")
        return self._extract_content(data)

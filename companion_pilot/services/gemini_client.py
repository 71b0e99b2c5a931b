from __future__ import annotations

import asyncio
import json
from typing import Any, Dict

import aiohttp

from ..errors import ConfigurationError, TransientError
from ..types import ModelRequest
from .base import AUTH_HTTP_STATUSES, TRANSIENT_HTTP_STATUSES


class GeminiClient:
    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int = 0,
        base_url: str = "https://generativelanguage.googleapis.com",
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.temperature = temperature
        self.max_output_tokens: int | None = int(max_output_tokens) if int(max_output_tokens) > 0 else None
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent?key={self.api_key}"

    def _build_payload(self, request: ModelRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": request.user_prompt}]}],
        }
        if request.system_prompt.strip():
            payload["systemInstruction"] = {"parts": [{"text": request.system_prompt}]}

        generation_config: Dict[str, Any] = {
            "temperature": self.temperature if request.temperature is None else request.temperature,
        }
        selected_tokens = self.max_output_tokens if request.max_output_tokens is None else request.max_output_tokens
        if selected_tokens is not None and int(selected_tokens) > 0:
            generation_config["maxOutputTokens"] = int(selected_tokens)
        payload["generationConfig"] = generation_config
        return payload

    async def _request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        try:
            async with self._session.post(self._endpoint(), json=payload) as response:
                text = await response.text()
                status = response.status
        except asyncio.TimeoutError as exc:
            raise TransientError("Gemini request timed out", stage="model") from exc
        except aiohttp.ClientError as exc:
            raise TransientError(f"Gemini request failed: {exc}", stage="model") from exc

        if status == 200:
            try:
                data = json.loads(text)
            except json.JSONDecodeError as exc:
                raise RuntimeError(f"Gemini returned invalid JSON: {exc}") from exc
            if not isinstance(data, dict):
                raise RuntimeError("Gemini returned a non-object payload")
            return data
        if status in AUTH_HTTP_STATUSES:
            raise ConfigurationError(f"Gemini rejected credentials ({status})", stage="model")
        if status in TRANSIENT_HTTP_STATUSES:
            raise TransientError(f"Gemini retriable error {status}: {text}", stage="model")
        raise RuntimeError(f"Gemini error {status}: {text}")

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            prompt_feedback = data.get("promptFeedback") or {}
            block_reason = prompt_feedback.get("blockReason")
            if block_reason:
                raise RuntimeError(f"Gemini blocked response: {block_reason}")
            raise RuntimeError("Gemini returned no candidates")

        first = candidates[0]
        content = first.get("content") or {}
        parts = content.get("parts") or []
        chunks = [
            part["text"].strip()
            for part in parts
            if isinstance(part.get("text"), str) and part["text"].strip()
        ]

        joined = "\n".join(chunks).strip()
        if joined:
            return joined

        finish_reason = first.get("finishReason")
        if finish_reason:
            raise RuntimeError(f"Gemini empty response (finishReason={finish_reason})")
        raise RuntimeError("Gemini empty response")

    async def complete(self, request: ModelRequest) -> str:
        data = await self._request(self._build_payload(request))
        return self._extract_text(data)

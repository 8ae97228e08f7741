from __future__ import annotations

import json
import logging
import os
import time
from io import BytesIO
from typing import Any, Optional, Sequence

from openai import AsyncOpenAI, OpenAIError

from app.ai.types import AIProviderError, ChatMessage

logger = logging.getLogger(__name__)


def _looks_like_placeholder(value: str) -> bool:
    lower = value.strip().lower()
    return lower.startswith("your_") or lower.startswith("replace_") or lower in {"changeme", "todo"}


def _provider_message(exc: Exception) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return str(message).strip() or "AI provider request failed."


class OpenAIProvider:
    def __init__(
        self,
        model: str,
        transcribe_model: str = "whisper-1",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 60.0,
        max_retries: int = 2,
    ):
        self._model = model
        self._transcribe_model = transcribe_model
        key = (api_key or os.getenv("OPENAI_API_KEY") or "").strip()
        if not key or _looks_like_placeholder(key):
            raise AIProviderError("OPENAI_API_KEY is missing", code="llm_disabled")

        self._client = AsyncOpenAI(
            api_key=key,
            base_url=(base_url or os.getenv("OPENAI_BASE_URL") or None),
            timeout=float(os.getenv("OPENAI_TIMEOUT_S", str(timeout_s))),
            max_retries=int(os.getenv("OPENAI_MAX_RETRIES", str(max_retries))),
        )

    async def complete_json(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: str | None = None,
        temperature: float = 0.2,
        max_output_tokens: int = 1500,
    ) -> dict[str, Any]:
        payload = [{"role": m.role, "content": m.content} for m in messages]
        model_name = model or self._model
        started = time.perf_counter()

        try:
            response = await self._client.chat.completions.create(
                model=model_name,
                messages=payload,
                temperature=temperature,
                response_format={"type": "json_object"},
                max_tokens=max_output_tokens,
            )
        except OpenAIError as exc:
            logger.warning("openai_json_failed model=%s prompt_len=%s: %s", model_name, len(payload), exc)
            raise AIProviderError(_provider_message(exc)) from exc

        content = response.choices[0].message.content if response.choices else ""
        if not content:
            raise AIProviderError("AI provider returned an empty response.", code="llm_empty")
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise AIProviderError("AI provider returned malformed JSON.", code="llm_invalid") from exc
        if not isinstance(parsed, dict):
            raise AIProviderError("AI provider returned malformed JSON.", code="llm_invalid")

        logger.info(
            "openai_json_completed model=%s latency_ms=%s",
            model_name,
            int((time.perf_counter() - started) * 1000),
        )
        return parsed

    async def transcribe(self, *, content: bytes, filename: str) -> str:
        file_obj = BytesIO(content)
        file_obj.name = filename
        started = time.perf_counter()
        try:
            response = await self._client.audio.transcriptions.create(
                model=self._transcribe_model,
                file=file_obj,
            )
        except OpenAIError as exc:
            logger.warning("openai_transcribe_failed model=%s file=%s: %s", self._transcribe_model, filename, exc)
            raise AIProviderError(_provider_message(exc), code="asr_unavailable") from exc

        text = getattr(response, "text", None)
        logger.info(
            "openai_transcribe_completed model=%s bytes=%s latency_ms=%s",
            self._transcribe_model,
            len(content),
            int((time.perf_counter() - started) * 1000),
        )
        return str(text or "").strip()

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError as SchemaValidationError

from app.ai.types import AIClient
from app.core.errors import ExternalServiceError
from app.schemas.analysis import (
    AnalysisResult,
    AnalyzeInterviewRequest,
    DocumentTextRequest,
    InterviewAnalysis,
)
from app.services.analysis_service import (
    run_analyze_interview,
    run_clarifications,
    run_summarize,
    run_transcribe,
)

logger = logging.getLogger(__name__)


class AnalysisGateway(Protocol):
    async def summarize(self, document_text: str) -> str: ...

    async def clarifications(self, document_text: str) -> list[str]: ...

    async def transcribe(self, *, content: bytes, filename: str, mime_type: str) -> str: ...

    async def analyze(self, *, summary: str, questions: list[str], transcript: str) -> AnalysisResult: ...


class ServiceAnalysisGateway:
    """Calls the analysis services in-process."""

    def __init__(self, client: AIClient):
        self._client = client

    async def summarize(self, document_text: str) -> str:
        response = await run_summarize(self._client, DocumentTextRequest(document_text=document_text))
        return response.summary

    async def clarifications(self, document_text: str) -> list[str]:
        response = await run_clarifications(self._client, DocumentTextRequest(document_text=document_text))
        return response.clarifications

    async def transcribe(self, *, content: bytes, filename: str, mime_type: str) -> str:
        _ = mime_type
        response = await run_transcribe(self._client, content=content, filename=filename)
        return response.transcript

    async def analyze(self, *, summary: str, questions: list[str], transcript: str) -> AnalysisResult:
        payload = AnalyzeInterviewRequest(summary=summary, questions=questions, transcript=transcript)
        analysis = await run_analyze_interview(self._client, payload)
        return AnalysisResult.from_interview_analysis(analysis)


class HttpAnalysisGateway:
    """Calls the analysis endpoints of a running deployment over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_s: float = 360.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"X-API-Key": api_key} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.post(path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("analysis_gateway_unreachable path=%s: %s", path, exc)
            raise ExternalServiceError("Could not reach the analysis service.", code="gateway_unreachable") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            message = body.get("error") if isinstance(body, dict) else None
            if not isinstance(message, str) or not message.strip():
                message = f"Request to {path} failed (HTTP {response.status_code})."
            raise ExternalServiceError(message, code="gateway_error")

        if not isinstance(body, dict):
            raise ExternalServiceError("Analysis service returned a malformed response.", code="gateway_invalid")
        return body

    async def summarize(self, document_text: str) -> str:
        body = await self._post("/v1/summarize", json={"documentText": document_text})
        summary = body.get("summary")
        if not isinstance(summary, str):
            raise ExternalServiceError("Analysis service returned a malformed response.", code="gateway_invalid")
        return summary

    async def clarifications(self, document_text: str) -> list[str]:
        body = await self._post("/v1/clarifications", json={"documentText": document_text})
        values = body.get("clarifications")
        if not isinstance(values, list):
            raise ExternalServiceError("Analysis service returned a malformed response.", code="gateway_invalid")
        return [str(value) for value in values]

    async def transcribe(self, *, content: bytes, filename: str, mime_type: str) -> str:
        body = await self._post("/v1/transcribe", files={"audio": (filename, content, mime_type)})
        transcript = body.get("transcript")
        if not isinstance(transcript, str):
            raise ExternalServiceError("Analysis service returned a malformed response.", code="gateway_invalid")
        return transcript

    async def analyze(self, *, summary: str, questions: list[str], transcript: str) -> AnalysisResult:
        body = await self._post(
            "/v1/analyze-interview",
            json={"summary": summary, "questions": questions, "transcript": transcript},
        )
        try:
            analysis = InterviewAnalysis.model_validate(body)
        except SchemaValidationError as exc:
            logger.warning("analysis_gateway_schema_invalid: %s", exc)
            raise ExternalServiceError("Analysis service returned a malformed response.", code="gateway_invalid") from exc
        return AnalysisResult.from_interview_analysis(analysis)

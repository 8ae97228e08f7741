from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError as SchemaValidationError

from app.ai.config import load_ai_config
from app.ai.types import AIClient, ChatMessage
from app.core.errors import ExternalServiceError, ValidationError
from app.schemas.analysis import (
    AnalyzeInterviewRequest,
    ClarificationsResponse,
    DocumentTextRequest,
    InterviewAnalysis,
    SummaryResponse,
    TranscriptResponse,
)

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert summarizer. Your task is to provide a concise, professional summary of the "
    "provided document text, capturing the key points, figures, and conclusions. The summary should be "
    "objective and data-driven. Respond with JSON of the form {\"summary\": string} where the summary is "
    "typically 3-5 sentences."
)

CLARIFICATIONS_SYSTEM_PROMPT = (
    "You are VerifierAI, an artificial intelligence system designed to perform verification and "
    "inconsistency analysis. Generate questions that test a person's knowledge of a document to verify "
    "its contents. Base them on key data points (amounts, dates, names, specific terms) found in the text, "
    "phrased as direct questions an interviewer would ask to confirm the interviewee's account matches "
    "the document. Produce at least 5 verification questions. Respond with JSON of the form "
    "{\"clarifications\": [string, ...]}."
)

ANALYSIS_SYSTEM_PROMPT = (
    "You are VerifierAI, an analysis system. Compare an interview transcript against a document summary "
    "and verification questions.\n"
    "- Categorize findings into 'inconsistent', 'needClarification', or 'aligned'.\n"
    "- 'inconsistent' items have severity \"high\".\n"
    "- 'needClarification' items have severity \"medium\".\n"
    "- 'aligned' items have severity \"low\".\n"
    "- Score Overall, Consistency, Clarity and Completeness from 0 to 100.\n"
    "Respond with JSON of the form {\"assessment\": {\"overallScore\": number, \"consistencyScore\": number, "
    "\"clarityScore\": number, \"completenessScore\": number, \"summary\": string, \"recommendation\": string}, "
    "\"analysis\": {\"inconsistent\": [item], \"needClarification\": [item], \"aligned\": [item]}} where each "
    "item is {\"title\": string, \"document\": string, \"interview\": string, \"severity\": string}."
)

MIN_CLARIFICATIONS = 5


def _clean_questions(values: Any) -> list[str]:
    if not isinstance(values, list):
        return []
    cleaned: list[str] = []
    for value in values:
        text = str(value or "").strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


def _malformed(tool: str, exc: Exception | None = None) -> ExternalServiceError:
    if exc is not None:
        logger.warning("analysis_schema_invalid tool=%s: %s", tool, exc)
    return ExternalServiceError("AI provider returned a malformed response.", code="llm_invalid")


async def run_summarize(client: AIClient, payload: DocumentTextRequest) -> SummaryResponse:
    document_text = payload.document_text.strip()
    if not document_text:
        raise ValidationError("Document text is required.")

    raw = await client.complete_json(
        [
            ChatMessage(role="system", content=SUMMARY_SYSTEM_PROMPT),
            ChatMessage(
                role="user",
                content=f"Please summarize the following document content:\n\n---\n\n{document_text}\n\n---",
            ),
        ],
        model=load_ai_config().model,
    )
    summary = raw.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise _malformed("summarize")
    return SummaryResponse(summary=summary.strip())


async def run_clarifications(client: AIClient, payload: DocumentTextRequest) -> ClarificationsResponse:
    document_text = payload.document_text.strip()
    if not document_text:
        raise ValidationError("Document text is required.")

    raw = await client.complete_json(
        [
            ChatMessage(role="system", content=CLARIFICATIONS_SYSTEM_PROMPT),
            ChatMessage(
                role="user",
                content=(
                    "Based on the following document text, generate a list of verification questions:"
                    f"\n\n---\n\n{document_text}\n\n---"
                ),
            ),
        ],
        model=load_ai_config().model,
    )
    if not isinstance(raw.get("clarifications"), list):
        raise _malformed("clarifications")
    questions = _clean_questions(raw.get("clarifications"))
    if len(questions) < MIN_CLARIFICATIONS:
        logger.info("clarifications_below_minimum count=%s", len(questions))
    return ClarificationsResponse(clarifications=questions)


async def run_transcribe(client: AIClient, *, content: bytes, filename: str) -> TranscriptResponse:
    if not content:
        raise ValidationError("Audio file is required.")
    transcript = await client.transcribe(content=content, filename=filename)
    if not transcript.strip():
        raise ExternalServiceError("Transcription returned no speech.", code="asr_empty")
    return TranscriptResponse(transcript=transcript.strip())


async def run_analyze_interview(client: AIClient, payload: AnalyzeInterviewRequest) -> InterviewAnalysis:
    questions = _clean_questions(payload.questions)
    if not payload.summary.strip() or not questions or not payload.transcript.strip():
        raise ValidationError("Missing required analysis data.")

    raw = await client.complete_json(
        [
            ChatMessage(role="system", content=ANALYSIS_SYSTEM_PROMPT),
            ChatMessage(
                role="user",
                content=(
                    f"Document Summary: {json.dumps(payload.summary.strip(), ensure_ascii=False)}\n"
                    f"Verification Questions: {json.dumps(questions, ensure_ascii=False)}\n"
                    f"Interview Transcript: {json.dumps(payload.transcript.strip(), ensure_ascii=False)}\n\n"
                    "Based on the provided data, perform a comprehensive analysis."
                ),
            ),
        ],
        model=load_ai_config().analysis_model,
        max_output_tokens=2500,
    )
    try:
        return InterviewAnalysis.model_validate(raw)
    except SchemaValidationError as exc:
        raise _malformed("analyze-interview", exc) from exc

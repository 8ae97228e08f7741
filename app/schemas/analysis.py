from __future__ import annotations

import math
from enum import Enum
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator

from app.schemas.staging import CamelModel, FileRole

Severity = Literal["high", "medium", "low"]

CATEGORY_SEVERITY: dict[str, Severity] = {
    "inconsistent": "high",
    "need_clarification": "medium",
    "aligned": "low",
}


def clamp_score(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        raise ValueError("score must be a number")
    if isinstance(value, str):
        value = value.strip().rstrip("%").strip()
    number = float(value)
    if not math.isfinite(number):
        raise ValueError("score must be a number")
    return max(0, min(100, int(round(number))))


class DocumentTextRequest(CamelModel):
    document_text: str = Field(default="", max_length=200_000)


class SummaryResponse(CamelModel):
    summary: str


class ClarificationsResponse(CamelModel):
    clarifications: list[str] = Field(default_factory=list)


class TranscriptResponse(CamelModel):
    transcript: str


class AnalyzeInterviewRequest(CamelModel):
    summary: str = Field(default="", max_length=50_000)
    questions: list[str] = Field(default_factory=list, max_length=100)
    transcript: str = Field(default="", max_length=200_000)


class Assessment(CamelModel):
    overall_score: int = Field(ge=0, le=100)
    consistency_score: int = Field(ge=0, le=100)
    clarity_score: int = Field(ge=0, le=100)
    completeness_score: int = Field(ge=0, le=100)
    summary: str = ""
    recommendation: str = ""

    @field_validator(
        "overall_score",
        "consistency_score",
        "clarity_score",
        "completeness_score",
        mode="before",
    )
    @classmethod
    def _normalize_score(cls, value: Any) -> int:
        return clamp_score(value)


class InterviewFinding(CamelModel):
    """One comparison item as the provider returns it."""

    title: str = ""
    document: str = ""
    interview: str = ""
    severity: str | None = None


class InterviewFindings(CamelModel):
    inconsistent: list[InterviewFinding] = Field(default_factory=list)
    need_clarification: list[InterviewFinding] = Field(default_factory=list)
    aligned: list[InterviewFinding] = Field(default_factory=list)

    @field_validator("inconsistent", "need_clarification", "aligned", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @model_validator(mode="after")
    def _force_severity(self) -> "InterviewFindings":
        # Severity belongs to the category, whatever the provider said.
        for field_name, severity in CATEGORY_SEVERITY.items():
            items = getattr(self, field_name)
            setattr(self, field_name, [item.model_copy(update={"severity": severity}) for item in items])
        return self


class InterviewAnalysis(CamelModel):
    assessment: Assessment
    analysis: InterviewFindings = Field(default_factory=InterviewFindings)

    @field_validator("analysis", mode="before")
    @classmethod
    def _none_to_default(cls, value: Any) -> Any:
        return {} if value is None else value


class Finding(CamelModel):
    title: str
    document_statement: str
    interview_statement: str
    severity: Severity


class AnalysisFindings(CamelModel):
    inconsistent: list[Finding] = Field(default_factory=list)
    need_clarification: list[Finding] = Field(default_factory=list)
    aligned: list[Finding] = Field(default_factory=list)


class AnalysisResult(CamelModel):
    assessment: Assessment
    findings: AnalysisFindings = Field(default_factory=AnalysisFindings)

    @classmethod
    def from_interview_analysis(cls, payload: InterviewAnalysis) -> "AnalysisResult":
        def convert(items: list[InterviewFinding], severity: Severity) -> list[Finding]:
            return [
                Finding(
                    title=item.title,
                    document_statement=item.document,
                    interview_statement=item.interview,
                    severity=severity,
                )
                for item in items
            ]

        return cls(
            assessment=payload.assessment,
            findings=AnalysisFindings(
                inconsistent=convert(payload.analysis.inconsistent, "high"),
                need_clarification=convert(payload.analysis.need_clarification, "medium"),
                aligned=convert(payload.analysis.aligned, "low"),
            ),
        )


class DocumentInsights(CamelModel):
    summary: str
    clarifications: list[str] = Field(default_factory=list)


class AnalysisPhase(str, Enum):
    IDLE = "idle"
    LOADING_FILE = "loading_file"
    EXTRACTING_OR_TRANSCRIBING = "extracting_or_transcribing"
    ANALYZING = "analyzing"
    READY = "ready"
    FAILED = "failed"


class SelectMemberRequest(CamelModel):
    member_index: int = Field(default=0, ge=0)


class AnalysisStateResponse(CamelModel):
    phase: AnalysisPhase
    role: FileRole
    member_index: int | None = None
    request_id: int = 0
    status: str = ""
    display_url: str | None = None
    transcript: str | None = None
    insights: DocumentInsights | None = None
    result: AnalysisResult | None = None

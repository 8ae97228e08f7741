"""Shared fakes and fixture builders for the test suite."""

import asyncio
import copy
import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Deterministic app settings; must run before anything imports app.core.config.
os.environ.setdefault("BLOB_STORE_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")
os.environ["API_KEY"] = ""

from app.schemas.analysis import AnalysisResult, InterviewAnalysis  # noqa: E402
from app.services.analysis_service import (  # noqa: E402
    ANALYSIS_SYSTEM_PROMPT,
    CLARIFICATIONS_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
)

MP3_BYTES = b"ID3\x04\x00\x00\x00\x00\x00\x00" + b"\x00" * 256
WAV_BYTES = b"RIFF\x24\x00\x00\x00WAVEfmt " + b"\x00" * 64


def build_pdf(text: str) -> bytes:
    """A single-page PDF whose page content draws ``text`` in Helvetica."""
    escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
    stream = f"BT /F1 12 Tf 72 720 Td ({escaped}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length " + str(len(stream)).encode() + b" >>\nstream\n" + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"
    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode()
    return bytes(out)


def analysis_payload(**overrides) -> dict:
    payload = {
        "assessment": {
            "overallScore": 72,
            "consistencyScore": 65,
            "clarityScore": 80,
            "completenessScore": 70,
            "summary": "Mostly consistent with one disputed figure.",
            "recommendation": "Follow up on the invoice total.",
        },
        "analysis": {
            "inconsistent": [
                {
                    "title": "Invoice total",
                    "document": "Total due is $4,200.",
                    "interview": "The total was about $3,000.",
                    "severity": "low",
                }
            ],
            "needClarification": [],
            "aligned": [
                {
                    "title": "Vendor name",
                    "document": "Vendor: Acme Ltd.",
                    "interview": "We used Acme.",
                    "severity": "low",
                }
            ],
        },
    }
    payload.update(overrides)
    return payload


class FakeAIClient:
    """AIClient stand-in that answers by system prompt."""

    def __init__(self, *, responses=None, transcript="We paid Acme about three thousand dollars.", transcribe_error=None):
        self.responses = {
            "summarize": {"summary": "Acme Ltd invoice for $4,200 due in March."},
            "clarifications": {
                "clarifications": [
                    "What was the invoice total?",
                    "Who was the vendor?",
                    "When was payment due?",
                    "What was purchased?",
                    "Who approved the invoice?",
                ]
            },
            "analyze": analysis_payload(),
        }
        self.responses.update(responses or {})
        self.transcript = transcript
        self.transcribe_error = transcribe_error
        self.calls: list[tuple[str, str | None]] = []
        self.transcribed: list[tuple[str, int]] = []

    async def complete_json(self, messages, *, model=None, temperature=0.2, max_output_tokens=1500):
        system = messages[0].content
        if system == SUMMARY_SYSTEM_PROMPT:
            tool = "summarize"
        elif system == CLARIFICATIONS_SYSTEM_PROMPT:
            tool = "clarifications"
        elif system == ANALYSIS_SYSTEM_PROMPT:
            tool = "analyze"
        else:
            raise AssertionError(f"unexpected system prompt: {system[:40]}")
        self.calls.append((tool, model))
        response = self.responses[tool]
        if isinstance(response, Exception):
            raise response
        return copy.deepcopy(response)

    async def transcribe(self, *, content, filename):
        self.transcribed.append((filename, len(content)))
        if self.transcribe_error is not None:
            raise self.transcribe_error
        return self.transcript


class FakeGateway:
    """AnalysisGateway whose transcriptions and comparisons can be held open."""

    def __init__(self, *, transcripts=None, transcribe_error=None, summarize_error=None):
        self.transcripts = transcripts or {}
        self.transcribe_error = transcribe_error
        self.summarize_error = summarize_error
        self.gates: dict[str, asyncio.Event] = {}
        self.analysis_gates: dict[str, asyncio.Event] = {}
        self.transcribe_calls: list[str] = []
        self.summarize_calls: list[str] = []
        self.analyze_calls: list[str] = []

    def hold(self, filename: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[filename] = gate
        return gate

    def hold_analysis(self, transcript: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.analysis_gates[transcript] = gate
        return gate

    async def summarize(self, document_text):
        self.summarize_calls.append(document_text)
        if self.summarize_error is not None:
            raise self.summarize_error
        return f"Summary of: {document_text}"

    async def clarifications(self, document_text):
        return [f"Confirm: {document_text}?"]

    async def transcribe(self, *, content, filename, mime_type):
        self.transcribe_calls.append(filename)
        gate = self.gates.get(filename)
        if gate is not None:
            await gate.wait()
        if self.transcribe_error is not None:
            raise self.transcribe_error
        return self.transcripts.get(filename, f"Transcript of {filename}")

    async def analyze(self, *, summary, questions, transcript):
        self.analyze_calls.append(transcript)
        gate = self.analysis_gates.get(transcript)
        if gate is not None:
            await gate.wait()
        payload = analysis_payload()
        payload["assessment"]["summary"] = f"Compared: {transcript}"
        return AnalysisResult.from_interview_analysis(InterviewAnalysis.model_validate(payload))

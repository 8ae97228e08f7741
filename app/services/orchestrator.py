from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass

from app.core.errors import AppError, NotFoundError, ValidationError
from app.schemas.analysis import (
    AnalysisPhase,
    AnalysisResult,
    AnalysisStateResponse,
    DocumentInsights,
)
from app.schemas.staging import FileDescriptor, FileRole
from app.services.gateways import AnalysisGateway
from app.staging.display import DisplayUrlRegistry
from app.staging.pipeline import FileStagingPipeline

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[AnalysisPhase, frozenset[AnalysisPhase]] = {
    AnalysisPhase.IDLE: frozenset({AnalysisPhase.LOADING_FILE}),
    AnalysisPhase.LOADING_FILE: frozenset(
        {AnalysisPhase.LOADING_FILE, AnalysisPhase.EXTRACTING_OR_TRANSCRIBING, AnalysisPhase.FAILED}
    ),
    AnalysisPhase.EXTRACTING_OR_TRANSCRIBING: frozenset(
        {AnalysisPhase.LOADING_FILE, AnalysisPhase.ANALYZING, AnalysisPhase.FAILED}
    ),
    AnalysisPhase.ANALYZING: frozenset({AnalysisPhase.LOADING_FILE, AnalysisPhase.READY, AnalysisPhase.FAILED}),
    AnalysisPhase.READY: frozenset({AnalysisPhase.LOADING_FILE}),
    AnalysisPhase.FAILED: frozenset({AnalysisPhase.LOADING_FILE}),
}

GENERIC_FAILURE_MESSAGE = "Analysis failed. Please try again."


class InvalidTransition(RuntimeError):
    pass


@dataclass(frozen=True)
class AnalysisState:
    phase: AnalysisPhase
    role: FileRole
    member_index: int | None = None
    request_id: int = 0
    status: str = ""
    display_url: str | None = None
    transcript: str | None = None
    insights: DocumentInsights | None = None
    result: AnalysisResult | None = None

    def to_response(self) -> AnalysisStateResponse:
        return AnalysisStateResponse(
            phase=self.phase,
            role=self.role,
            member_index=self.member_index,
            request_id=self.request_id,
            status=self.status,
            display_url=self.display_url,
            transcript=self.transcript,
            insights=self.insights,
            result=self.result,
        )


async def build_document_insights(gateway: AnalysisGateway, document_text: str) -> DocumentInsights:
    summary, clarifications = await asyncio.gather(
        gateway.summarize(document_text),
        gateway.clarifications(document_text),
    )
    return DocumentInsights(summary=summary, clarifications=clarifications)


def _descriptor_identity(member: FileDescriptor) -> tuple:
    return (member.store_key, member.name, member.size, member.last_modified)


class DocumentContext:
    """Summary and questions for the document an interview is checked against."""

    def __init__(self, session_id: str, pipeline: FileStagingPipeline):
        self._session_id = session_id
        self._pipeline = pipeline
        self._insights: dict[tuple, DocumentInsights] = {}
        self._active_key: str | None = None

    def remember(self, member: FileDescriptor, insights: DocumentInsights) -> None:
        self._insights[_descriptor_identity(member)] = insights
        self._active_key = member.store_key

    def _current_member(self) -> FileDescriptor:
        bundle = self._pipeline.get_bundle(self._session_id, "document")
        if bundle is None:
            raise NotFoundError("Upload a document before analyzing an interview.", code="document_missing")
        for member in bundle.members:
            if member.store_key == self._active_key:
                return member
        return bundle.primary

    async def resolve(self, gateway: AnalysisGateway) -> DocumentInsights:
        member = self._current_member()
        cached = self._insights.get(_descriptor_identity(member))
        if cached is not None:
            return cached
        text = await self._pipeline.document_text(self._session_id, member)
        if not text.strip():
            raise ValidationError("No text could be extracted from this document.", code="document_text_empty")
        insights = await build_document_insights(gateway, text)
        self._insights[_descriptor_identity(member)] = insights
        return insights


class AnalysisOrchestrator:
    def __init__(
        self,
        session_id: str,
        role: FileRole,
        *,
        pipeline: FileStagingPipeline,
        display_urls: DisplayUrlRegistry,
        context: DocumentContext,
        gateway: AnalysisGateway,
    ):
        self.session_id = session_id
        self.role = role
        self.gateway = gateway
        self._pipeline = pipeline
        self._display_urls = display_urls
        self._context = context
        self._state = AnalysisState(phase=AnalysisPhase.IDLE, role=role)
        self._request_counter = 0
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> AnalysisState:
        return self._state

    def _is_current(self, request_id: int) -> bool:
        return request_id == self._request_counter

    def _transition(self, for_request: int, phase: AnalysisPhase, **changes) -> bool:
        if not self._is_current(for_request):
            logger.info(
                "analysis_stale_result_discarded role=%s request=%s current=%s phase=%s",
                self.role,
                for_request,
                self._request_counter,
                phase.value,
            )
            return False
        if phase not in _ALLOWED_TRANSITIONS[self._state.phase]:
            raise InvalidTransition(f"{self._state.phase.value} -> {phase.value}")
        self._state = dataclasses.replace(self._state, phase=phase, **changes)
        return True

    def _release_display_url(self) -> None:
        if self._state.display_url:
            self._display_urls.revoke(self._state.display_url)
            self._state = dataclasses.replace(self._state, display_url=None)

    def _begin(self, member_index: int) -> int:
        self._request_counter += 1
        request_id = self._request_counter
        self._release_display_url()
        self._transition(
            request_id,
            AnalysisPhase.LOADING_FILE,
            member_index=member_index,
            request_id=request_id,
            status="Loading file...",
            transcript=None,
            insights=None,
            result=None,
        )
        logger.info("analysis_started role=%s member=%s request=%s", self.role, member_index, request_id)
        return request_id

    async def select(self, member_index: int) -> AnalysisState:
        """Run the analysis for ``member_index`` to completion and return the final state."""
        request_id = self._begin(member_index)
        await self._run(request_id, member_index)
        return self._state

    def start(self, member_index: int) -> AnalysisState:
        request_id = self._begin(member_index)
        task = asyncio.create_task(self._run(request_id, member_index))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return self._state

    async def wait(self) -> AnalysisState:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return self._state

    def close(self) -> None:
        self._request_counter += 1
        self._release_display_url()
        for task in list(self._tasks):
            task.cancel()
        self._state = AnalysisState(phase=AnalysisPhase.IDLE, role=self.role)

    def _fail(self, request_id: int, message: str) -> None:
        self._transition(request_id, AnalysisPhase.FAILED, status=message)

    async def _run(self, request_id: int, member_index: int) -> None:
        try:
            await self._load_and_analyze(request_id, member_index)
        except AppError as exc:
            logger.warning("analysis_failed role=%s member=%s code=%s: %s", self.role, member_index, exc.code, exc.message)
            self._fail(request_id, exc.message)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001 - every failure must end in the failed state
            logger.exception("analysis_crashed role=%s member=%s", self.role, member_index)
            self._fail(request_id, GENERIC_FAILURE_MESSAGE)

    async def _load_and_analyze(self, request_id: int, member_index: int) -> None:
        bundle = self._pipeline.get_bundle(self.session_id, self.role)
        if bundle is None:
            raise NotFoundError("No files staged for analysis. Please upload first.", code="bundle_missing")
        member = bundle.member(member_index)
        if member is None:
            raise ValidationError(f"No staged file at position {member_index}.", code="member_missing")

        content = await self._pipeline.require(self.session_id, member.store_key)
        if not self._is_current(request_id):
            return
        display_url = self._display_urls.create(content, member.mime_type, member.name)
        status = "Extracting document text..." if self.role == "document" else "Transcribing interview..."
        self._transition(
            request_id,
            AnalysisPhase.EXTRACTING_OR_TRANSCRIBING,
            display_url=display_url,
            status=status,
        )

        if self.role == "document":
            await self._analyze_document(request_id, member)
        else:
            await self._analyze_audio(request_id, member, content)

    async def _analyze_document(self, request_id: int, member: FileDescriptor) -> None:
        text = await self._pipeline.document_text(self.session_id, member)
        if not self._is_current(request_id):
            return
        if not text.strip():
            raise ValidationError("No text could be extracted from this document.", code="document_text_empty")

        self._transition(request_id, AnalysisPhase.ANALYZING, status="Generating summary and verification questions...")
        insights = await build_document_insights(self.gateway, text)
        if self._transition(request_id, AnalysisPhase.READY, insights=insights, status="Analysis complete."):
            self._context.remember(member, insights)

    async def _analyze_audio(self, request_id: int, member: FileDescriptor, content: bytes) -> None:
        transcript = await self.gateway.transcribe(content=content, filename=member.name, mime_type=member.mime_type)
        if not self._transition(
            request_id,
            AnalysisPhase.ANALYZING,
            transcript=transcript,
            status="Comparing interview against the document...",
        ):
            return

        insights = await self._context.resolve(self.gateway)
        if not self._is_current(request_id):
            return
        result = await self.gateway.analyze(
            summary=insights.summary,
            questions=insights.clarifications,
            transcript=transcript,
        )
        self._transition(request_id, AnalysisPhase.READY, insights=insights, result=result, status="Analysis complete.")


class OrchestratorRegistry:
    """One orchestrator per (session, role); documents and audio share a context."""

    def __init__(self, pipeline: FileStagingPipeline, display_urls: DisplayUrlRegistry):
        self._pipeline = pipeline
        self._display_urls = display_urls
        self._orchestrators: dict[tuple[str, FileRole], AnalysisOrchestrator] = {}
        self._contexts: dict[str, DocumentContext] = {}

    def get(self, session_id: str, role: FileRole, gateway: AnalysisGateway) -> AnalysisOrchestrator:
        orchestrator = self._orchestrators.get((session_id, role))
        if orchestrator is None:
            context = self._contexts.setdefault(session_id, DocumentContext(session_id, self._pipeline))
            orchestrator = AnalysisOrchestrator(
                session_id,
                role,
                pipeline=self._pipeline,
                display_urls=self._display_urls,
                context=context,
                gateway=gateway,
            )
            self._orchestrators[(session_id, role)] = orchestrator
        else:
            orchestrator.gateway = gateway
        return orchestrator

    def peek(self, session_id: str, role: FileRole) -> AnalysisOrchestrator | None:
        return self._orchestrators.get((session_id, role))

    def close_session(self, session_id: str) -> None:
        for key in [key for key in self._orchestrators if key[0] == session_id]:
            self._orchestrators.pop(key).close()
        self._contexts.pop(session_id, None)

    def close_all(self) -> None:
        for session_id in {key[0] for key in self._orchestrators}:
            self.close_session(session_id)
        self._contexts.clear()

import asyncio
import unittest

import httpx

import support

from app.core.errors import ExternalServiceError
from app.schemas.analysis import AnalysisPhase
from app.services.gateways import HttpAnalysisGateway
from app.services.orchestrator import GENERIC_FAILURE_MESSAGE, InvalidTransition, OrchestratorRegistry
from app.staging.blob_store import InMemoryBlobStore
from app.staging.display import DisplayUrlRegistry
from app.staging.pipeline import FileStagingPipeline, StagedFile
from app.staging.session_store import SessionMetadataStore


def _text_from_bytes(content: bytes, filename: str) -> str:
    return content.decode("utf-8", errors="ignore")


class OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.blobs = InMemoryBlobStore()
        self.pipeline = FileStagingPipeline(
            self.blobs,
            SessionMetadataStore(ttl_seconds=3600),
            max_batch_files=10,
            text_extractor=_text_from_bytes,
        )
        self.display_urls = DisplayUrlRegistry()
        self.registry = OrchestratorRegistry(self.pipeline, self.display_urls)
        self.session_id = await self.pipeline.open_session()

    async def stage_documents(self, *texts: str):
        files = [
            StagedFile(name=f"doc{i}.pdf", content=text.encode(), mime_type="application/pdf")
            for i, text in enumerate(texts)
        ]
        return await self.pipeline.commit_upload(self.session_id, "document", files)

    async def stage_audio(self, *names: str):
        files = [StagedFile(name=name, content=support.MP3_BYTES, mime_type="audio/mpeg") for name in names]
        return await self.pipeline.commit_upload(self.session_id, "audio", files)


class DocumentAnalysisTests(OrchestratorTestCase):
    async def test_document_flow_reaches_ready(self):
        await self.stage_documents("Invoice 4200", "Receipt 99")
        gateway = support.FakeGateway()
        orchestrator = self.registry.get(self.session_id, "document", gateway)

        state = await orchestrator.select(1)

        self.assertEqual(state.phase, AnalysisPhase.READY)
        self.assertEqual(state.member_index, 1)
        self.assertEqual(state.insights.summary, "Summary of: Receipt 99")
        self.assertEqual(state.request_id, 1)
        self.assertEqual(state.insights.clarifications, ["Confirm: Receipt 99?"])
        self.assertTrue(state.display_url.startswith("/v1/display/"))
        self.assertEqual(len(self.display_urls), 1)

    async def test_reselect_revokes_previous_display_url(self):
        await self.stage_documents("Invoice 4200", "Receipt 99")
        orchestrator = self.registry.get(self.session_id, "document", support.FakeGateway())

        first = await orchestrator.select(0)
        second = await orchestrator.select(1)

        self.assertNotEqual(first.display_url, second.display_url)
        token = first.display_url.rsplit("/", 1)[-1]
        self.assertIsNone(self.display_urls.get(token))
        self.assertEqual(len(self.display_urls), 1)

        orchestrator.close()
        self.assertEqual(len(self.display_urls), 0)
        self.assertEqual(orchestrator.state.phase, AnalysisPhase.IDLE)

    async def test_each_selection_gets_a_new_request_id(self):
        await self.stage_documents("Invoice 4200", "Receipt 99")
        orchestrator = self.registry.get(self.session_id, "document", support.FakeGateway())

        started = orchestrator.start(0)
        self.assertEqual(started.phase, AnalysisPhase.LOADING_FILE)
        self.assertEqual(started.request_id, 1)
        self.assertEqual(started.member_index, 0)
        await orchestrator.wait()

        state = await orchestrator.select(1)
        self.assertEqual(state.request_id, 2)
        self.assertEqual(state.phase, AnalysisPhase.READY)

    async def test_empty_document_text_fails(self):
        await self.stage_documents("   ")
        orchestrator = self.registry.get(self.session_id, "document", support.FakeGateway())

        state = await orchestrator.select(0)

        self.assertEqual(state.phase, AnalysisPhase.FAILED)
        self.assertEqual(state.status, "No text could be extracted from this document.")

    async def test_missing_blob_fails_with_reupload_message(self):
        await self.stage_documents("Invoice 4200")
        await self.blobs.scope(self.session_id).delete_all()
        orchestrator = self.registry.get(self.session_id, "document", support.FakeGateway())

        state = await orchestrator.select(0)

        self.assertEqual(state.phase, AnalysisPhase.FAILED)
        self.assertEqual(state.status, "File unavailable, please re-upload.")

    async def test_out_of_range_member_fails(self):
        await self.stage_documents("Invoice 4200")
        orchestrator = self.registry.get(self.session_id, "document", support.FakeGateway())

        state = await orchestrator.select(4)

        self.assertEqual(state.phase, AnalysisPhase.FAILED)
        self.assertIn("position 4", state.status)

    async def test_unexpected_error_uses_generic_message(self):
        await self.stage_documents("Invoice 4200")
        gateway = support.FakeGateway(summarize_error=KeyError("boom"))
        orchestrator = self.registry.get(self.session_id, "document", gateway)

        state = await orchestrator.select(0)

        self.assertEqual(state.phase, AnalysisPhase.FAILED)
        self.assertEqual(state.status, GENERIC_FAILURE_MESSAGE)

    async def test_illegal_transition_raises(self):
        orchestrator = self.registry.get(self.session_id, "document", support.FakeGateway())
        with self.assertRaises(InvalidTransition):
            orchestrator._transition(orchestrator.state.request_id, AnalysisPhase.READY)


class AudioAnalysisTests(OrchestratorTestCase):
    async def test_audio_flow_compares_against_document(self):
        await self.stage_documents("Invoice 4200")
        await self.stage_audio("call.mp3")
        gateway = support.FakeGateway(transcripts={"call.mp3": "We paid about 3000."})
        orchestrator = self.registry.get(self.session_id, "audio", gateway)

        state = await orchestrator.select(0)

        self.assertEqual(state.phase, AnalysisPhase.READY)
        self.assertEqual(state.transcript, "We paid about 3000.")
        self.assertEqual(state.insights.summary, "Summary of: Invoice 4200")
        self.assertEqual(state.result.assessment.overall_score, 72)
        self.assertEqual(state.result.findings.inconsistent[0].severity, "high")
        self.assertEqual(gateway.analyze_calls, ["We paid about 3000."])

    async def test_document_insights_are_reused(self):
        await self.stage_documents("Invoice 4200")
        await self.stage_audio("call.mp3")
        gateway = support.FakeGateway()
        await self.registry.get(self.session_id, "document", gateway).select(0)
        await self.registry.get(self.session_id, "audio", gateway).select(0)

        self.assertEqual(gateway.summarize_calls, ["Invoice 4200"])

    async def test_audio_without_document_fails(self):
        await self.stage_audio("call.mp3")
        orchestrator = self.registry.get(self.session_id, "audio", support.FakeGateway())

        state = await orchestrator.select(0)

        self.assertEqual(state.phase, AnalysisPhase.FAILED)
        self.assertEqual(state.status, "Upload a document before analyzing an interview.")

    async def test_transcription_error_surfaces_provider_message(self):
        await self.stage_documents("Invoice 4200")
        await self.stage_audio("call.mp3")
        gateway = support.FakeGateway(transcribe_error=ExternalServiceError("Transcription failed"))
        orchestrator = self.registry.get(self.session_id, "audio", gateway)

        state = await orchestrator.select(0)

        self.assertEqual(state.phase, AnalysisPhase.FAILED)
        self.assertEqual(state.status, "Transcription failed")
        self.assertIsNone(state.result)

    async def test_switching_members_discards_stale_result(self):
        await self.stage_documents("Invoice 4200")
        await self.stage_audio("first.mp3", "second.mp3")
        gateway = support.FakeGateway()
        gate = gateway.hold("first.mp3")
        orchestrator = self.registry.get(self.session_id, "audio", gateway)

        orchestrator.start(0)
        while "first.mp3" not in gateway.transcribe_calls:
            await asyncio.sleep(0)
        orchestrator.start(1)
        gate.set()
        state = await orchestrator.wait()

        self.assertEqual(state.phase, AnalysisPhase.READY)
        self.assertEqual(state.member_index, 1)
        self.assertEqual(state.transcript, "Transcript of second.mp3")
        self.assertEqual(gateway.analyze_calls, ["Transcript of second.mp3"])
        self.assertEqual(len(self.display_urls), 1)

    async def test_stale_comparison_does_not_overwrite_newer_member(self):
        await self.stage_documents("Invoice 4200")
        await self.stage_audio("first.mp3", "second.mp3")
        gateway = support.FakeGateway()
        gate = gateway.hold_analysis("Transcript of first.mp3")
        orchestrator = self.registry.get(self.session_id, "audio", gateway)

        orchestrator.start(0)
        while not gateway.analyze_calls:
            await asyncio.sleep(0)
        self.assertEqual(orchestrator.state.phase, AnalysisPhase.ANALYZING)
        self.assertEqual(orchestrator.state.member_index, 0)

        orchestrator.start(1)
        while len(gateway.analyze_calls) < 2:
            await asyncio.sleep(0)
        gate.set()
        state = await orchestrator.wait()

        self.assertEqual(state.phase, AnalysisPhase.READY)
        self.assertEqual(state.member_index, 1)
        self.assertEqual(state.result.assessment.summary, "Compared: Transcript of second.mp3")

    async def test_close_session_stops_pending_work(self):
        await self.stage_documents("Invoice 4200")
        await self.stage_audio("call.mp3")
        gateway = support.FakeGateway()
        gateway.hold("call.mp3")
        orchestrator = self.registry.get(self.session_id, "audio", gateway)

        orchestrator.start(0)
        while not gateway.transcribe_calls:
            await asyncio.sleep(0)
        self.registry.close_session(self.session_id)
        await orchestrator.wait()

        self.assertEqual(orchestrator.state.phase, AnalysisPhase.IDLE)
        self.assertIsNone(self.registry.peek(self.session_id, "audio"))
        self.assertEqual(len(self.display_urls), 0)


class HttpGatewayTests(OrchestratorTestCase):
    def _gateway(self, handler) -> HttpAnalysisGateway:
        return HttpAnalysisGateway("http://checker.test/", api_key="secret", transport=httpx.MockTransport(handler))

    async def test_error_body_message_reaches_failed_state(self):
        await self.stage_documents("Invoice 4200")
        await self.stage_audio("call.mp3")

        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual(request.headers["X-API-Key"], "secret")
            if request.url.path == "/v1/transcribe":
                return httpx.Response(500, json={"error": "Transcription failed"})
            return httpx.Response(404)

        gateway = self._gateway(handler)
        try:
            state = await self.registry.get(self.session_id, "audio", gateway).select(0)
        finally:
            await gateway.aclose()

        self.assertEqual(state.phase, AnalysisPhase.FAILED)
        self.assertEqual(state.status, "Transcription failed")

    async def test_successful_round_trip(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/summarize":
                return httpx.Response(200, json={"summary": "An invoice."})
            if request.url.path == "/v1/clarifications":
                return httpx.Response(200, json={"clarifications": ["Total?", "Vendor?"]})
            if request.url.path == "/v1/analyze-interview":
                return httpx.Response(200, json=support.analysis_payload())
            return httpx.Response(404)

        gateway = self._gateway(handler)
        try:
            self.assertEqual(await gateway.summarize("text"), "An invoice.")
            self.assertEqual(await gateway.clarifications("text"), ["Total?", "Vendor?"])
            result = await gateway.analyze(summary="An invoice.", questions=["Total?"], transcript="hi")
        finally:
            await gateway.aclose()

        self.assertEqual(result.findings.aligned[0].document_statement, "Vendor: Acme Ltd.")
        self.assertEqual(result.findings.aligned[0].severity, "low")

    async def test_status_fallback_and_unreachable(self):
        def plain_error(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="upstream down")

        gateway = self._gateway(plain_error)
        try:
            with self.assertRaises(ExternalServiceError) as ctx:
                await gateway.summarize("text")
        finally:
            await gateway.aclose()
        self.assertEqual(ctx.exception.message, "Request to /v1/summarize failed (HTTP 503).")

        def offline(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway = self._gateway(offline)
        try:
            with self.assertRaises(ExternalServiceError) as ctx:
                await gateway.clarifications("text")
        finally:
            await gateway.aclose()
        self.assertEqual(ctx.exception.message, "Could not reach the analysis service.")


if __name__ == "__main__":
    unittest.main()

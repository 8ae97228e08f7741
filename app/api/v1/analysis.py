from fastapi import APIRouter, Depends, File, Request, UploadFile

from app.ai.factory import get_ai_client
from app.ai.types import AIClient
from app.api.uploads import read_upload
from app.core.config import settings
from app.core.errors import ValidationError
from app.core.rate_limit import rate_limit
from app.core.security import require_api_key
from app.schemas.analysis import (
    AnalyzeInterviewRequest,
    ClarificationsResponse,
    DocumentTextRequest,
    InterviewAnalysis,
    SummaryResponse,
    TranscriptResponse,
)
from app.services.analysis_service import (
    run_analyze_interview,
    run_clarifications,
    run_summarize,
    run_transcribe,
)
from app.staging.validation import validate_file_type, validate_upload_signature

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/summarize", response_model=SummaryResponse)
@rate_limit()
async def summarize(request: Request, payload: DocumentTextRequest, client: AIClient = Depends(get_ai_client)):
    _ = request
    return await run_summarize(client, payload)


@router.post("/clarifications", response_model=ClarificationsResponse)
@rate_limit()
async def clarifications(request: Request, payload: DocumentTextRequest, client: AIClient = Depends(get_ai_client)):
    _ = request
    return await run_clarifications(client, payload)


@router.post("/transcribe", response_model=TranscriptResponse)
@rate_limit()
async def transcribe(
    request: Request,
    audio: UploadFile | None = File(default=None),
    client: AIClient = Depends(get_ai_client),
):
    _ = request
    if audio is None:
        raise ValidationError("Audio file is required.")
    filename = audio.filename or "interview.mp3"
    validate_file_type("audio", filename)
    content = await read_upload(audio, settings.max_upload_bytes)
    validate_upload_signature(filename=filename, content=content)
    return await run_transcribe(client, content=content, filename=filename)


@router.post("/analyze-interview", response_model=InterviewAnalysis)
@rate_limit()
async def analyze_interview(
    request: Request,
    payload: AnalyzeInterviewRequest,
    client: AIClient = Depends(get_ai_client),
):
    _ = request
    return await run_analyze_interview(client, payload)

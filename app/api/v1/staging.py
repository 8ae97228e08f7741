from datetime import datetime, timezone
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile, status

from app.api.deps import get_gateway, get_services, require_session
from app.api.uploads import read_upload
from app.core.config import settings
from app.core.errors import NotFoundError
from app.core.rate_limit import rate_limit
from app.core.security import require_api_key
from app.core.services import ServiceContainer
from app.schemas.analysis import AnalysisPhase, AnalysisStateResponse, SelectMemberRequest
from app.schemas.staging import FileRole, SessionBundle, SessionCreatedResponse
from app.services.gateways import AnalysisGateway
from app.services.orchestrator import AnalysisState
from app.staging.pipeline import StagedFile
from app.staging.validation import (
    content_type_for,
    validate_batch_size,
    validate_file_type,
    validate_upload_signature,
)

router = APIRouter(dependencies=[Depends(require_api_key)])
# Display links are authorized by their token alone.
display_router = APIRouter()


def _parse_last_modified(values: list[int] | None, index: int) -> datetime:
    # Browser File.lastModified is milliseconds since the epoch.
    if values and index < len(values) and values[index] > 0:
        return datetime.fromtimestamp(values[index] / 1000, tz=timezone.utc)
    return datetime.now(timezone.utc)


@router.post("/sessions", response_model=SessionCreatedResponse, status_code=status.HTTP_201_CREATED)
async def open_session(services: ServiceContainer = Depends(get_services)):
    session_id = await services.pipeline.open_session()
    return SessionCreatedResponse(session_id=session_id)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_session(session_id: str, services: ServiceContainer = Depends(get_services)):
    services.orchestrators.close_session(session_id)
    await services.pipeline.discard_all(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sessions/{session_id}/files/{role}", response_model=SessionBundle)
async def commit_files(
    role: FileRole,
    session_id: str = Depends(require_session),
    files: list[UploadFile] | None = File(default=None),
    last_modified: list[int] | None = Form(default=None, alias="lastModified"),
    services: ServiceContainer = Depends(get_services),
):
    files = files or []
    validate_batch_size(len(files), settings.max_batch_files)
    staged: list[StagedFile] = []
    for index, upload in enumerate(files):
        filename = upload.filename or f"upload-{index + 1}"
        validate_file_type(role, filename)
        content = await read_upload(upload, settings.max_upload_bytes)
        validate_upload_signature(filename=filename, content=content)
        staged.append(
            StagedFile(
                name=filename,
                content=content,
                mime_type=content_type_for(filename, upload.content_type),
                last_modified=_parse_last_modified(last_modified, index),
            )
        )

    bundle = await services.pipeline.commit_upload(session_id, role, staged)
    # A new batch invalidates whatever was being analyzed for this role.
    orchestrator = services.orchestrators.peek(session_id, role)
    if orchestrator is not None:
        orchestrator.close()
    return bundle


@router.get("/sessions/{session_id}/files/{role}", response_model=SessionBundle)
async def get_files(
    role: FileRole,
    session_id: str = Depends(require_session),
    services: ServiceContainer = Depends(get_services),
):
    bundle = services.pipeline.get_bundle(session_id, role)
    if bundle is None:
        raise NotFoundError(f"No {role} files have been uploaded in this session.", code="bundle_missing")
    return bundle


@router.get("/sessions/{session_id}/blobs/{store_key}")
async def get_blob(
    store_key: str,
    session_id: str = Depends(require_session),
    services: ServiceContainer = Depends(get_services),
):
    content = await services.pipeline.require(session_id, store_key)
    descriptor = services.pipeline.find_descriptor(session_id, store_key)
    media_type = descriptor.mime_type if descriptor else "application/octet-stream"
    return Response(content=content, media_type=media_type)


@router.post(
    "/sessions/{session_id}/analysis/{role}",
    response_model=AnalysisStateResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
@rate_limit()
async def start_analysis(
    request: Request,
    role: FileRole,
    payload: SelectMemberRequest,
    session_id: str = Depends(require_session),
    services: ServiceContainer = Depends(get_services),
    gateway: AnalysisGateway = Depends(get_gateway),
):
    _ = request
    orchestrator = services.orchestrators.get(session_id, role, gateway)
    state = orchestrator.start(payload.member_index)
    return state.to_response()


@router.get("/sessions/{session_id}/analysis/{role}", response_model=AnalysisStateResponse)
async def get_analysis(
    role: FileRole,
    session_id: str = Depends(require_session),
    services: ServiceContainer = Depends(get_services),
):
    orchestrator = services.orchestrators.peek(session_id, role)
    state = orchestrator.state if orchestrator else AnalysisState(phase=AnalysisPhase.IDLE, role=role)
    return state.to_response()


@display_router.get("/display/{token}")
async def get_display(token: str, services: ServiceContainer = Depends(get_services)):
    entry = services.display_urls.get(token)
    if entry is None:
        raise NotFoundError("Display link expired.", code="display_expired")
    return Response(
        content=entry.content,
        media_type=entry.media_type,
        headers={
            "Content-Disposition": f"inline; filename*=UTF-8''{quote(entry.filename)}",
            "Cache-Control": "no-store",
        },
    )

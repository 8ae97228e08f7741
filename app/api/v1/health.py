from fastapi import APIRouter

from app.ai.config import load_ai_config
from app.core.config import settings

router = APIRouter()


@router.get("/health", summary="Health Check", description="Report service status and the configured backends.")
async def health_check():
    ai = load_ai_config()
    return {
        "status": "healthy",
        "blobStore": settings.blob_store_backend,
        "aiProvider": ai.provider,
        "maxUploadMb": settings.max_upload_mb,
        "maxBatchFiles": settings.max_batch_files,
    }

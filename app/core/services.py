from __future__ import annotations

from dataclasses import dataclass

from app.core.config import Settings, settings as default_settings
from app.staging.blob_store import BlobStore, InMemoryBlobStore, SqliteBlobStore
from app.staging.display import DisplayUrlRegistry
from app.staging.pipeline import FileStagingPipeline
from app.staging.session_store import SessionMetadataStore
from app.services.orchestrator import OrchestratorRegistry


@dataclass
class ServiceContainer:
    blob_store: BlobStore
    metadata: SessionMetadataStore
    pipeline: FileStagingPipeline
    display_urls: DisplayUrlRegistry
    orchestrators: OrchestratorRegistry


def build_blob_store(config: Settings) -> BlobStore:
    if config.blob_store_backend == "memory":
        return InMemoryBlobStore()
    return SqliteBlobStore(config.blob_store_db_path)


def build_services(config: Settings | None = None, *, blob_store: BlobStore | None = None) -> ServiceContainer:
    config = config or default_settings
    store = blob_store or build_blob_store(config)
    metadata = SessionMetadataStore(ttl_seconds=config.session_ttl_minutes * 60)
    pipeline = FileStagingPipeline(store, metadata, max_batch_files=config.max_batch_files)
    display_urls = DisplayUrlRegistry()
    return ServiceContainer(
        blob_store=store,
        metadata=metadata,
        pipeline=pipeline,
        display_urls=display_urls,
        orchestrators=OrchestratorRegistry(pipeline, display_urls),
    )

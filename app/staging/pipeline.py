from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Sequence

from app.core.errors import FILE_UNAVAILABLE_MESSAGE, NotFoundError, ValidationError
from app.parsing.parse import extract_document_text
from app.schemas.staging import FILE_ROLES, FileDescriptor, FileRole, SessionBundle
from app.staging.blob_store import BlobStore
from app.staging.keys import key_ref, legacy_key, member_key, role_sweep_keys
from app.staging.session_store import SessionMetadataStore

logger = logging.getLogger(__name__)

TextExtractor = Callable[[bytes, str], str]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _short(session_id: str) -> str:
    return session_id[:8]


@dataclass(frozen=True)
class StagedFile:
    name: str
    content: bytes
    mime_type: str = "application/octet-stream"
    last_modified: datetime = field(default_factory=_utc_now)


class FileStagingPipeline:
    def __init__(
        self,
        blob_store: BlobStore,
        metadata: SessionMetadataStore,
        *,
        max_batch_files: int,
        text_extractor: TextExtractor = extract_document_text,
    ):
        self._blobs = blob_store
        self._metadata = metadata
        self._max_batch_files = max_batch_files
        self._text_extractor = text_extractor
        self._commit_locks: dict[tuple[str, FileRole], asyncio.Lock] = {}

    @property
    def metadata(self) -> SessionMetadataStore:
        return self._metadata

    async def open_session(self) -> str:
        session_id = secrets.token_urlsafe(16)
        await self.discard_all(session_id)
        self._metadata.open(session_id)
        logger.info("staging_session_opened session=%s", _short(session_id))
        return session_id

    def has_session(self, session_id: str) -> bool:
        return self._metadata.exists(session_id)

    def _commit_lock(self, session_id: str, role: FileRole) -> asyncio.Lock:
        return self._commit_locks.setdefault((session_id, role), asyncio.Lock())

    def _drop_commit_locks(self, session_id: str) -> None:
        for key in [key for key, lock in self._commit_locks.items() if key[0] == session_id and not lock.locked()]:
            self._commit_locks.pop(key, None)

    async def discard_all(self, session_id: str) -> None:
        await self._blobs.scope(session_id).delete_all()
        self._metadata.clear_all(session_id)
        self._drop_commit_locks(session_id)

    async def _extract_text(self, staged: StagedFile) -> str:
        try:
            return await asyncio.to_thread(self._text_extractor, staged.content, staged.name)
        except Exception as exc:  # noqa: BLE001 - one unreadable file must not abort the batch
            logger.warning("document_text_extraction_failed file=%s: %s", staged.name, exc)
            return ""

    async def commit_upload(self, session_id: str, role: FileRole, files: Sequence[StagedFile]) -> SessionBundle:
        if not files:
            raise ValidationError("At least one file is required.", code="empty_batch")

        texts: list[str | None] = [None] * len(files)
        if role == "document":
            texts = list(await asyncio.gather(*(self._extract_text(staged) for staged in files)))

        members = [
            FileDescriptor(
                name=staged.name,
                size=len(staged.content),
                mime_type=staged.mime_type,
                last_modified=staged.last_modified,
                role=role,
                store_key=member_key(role, index),
                extracted_text=texts[index],
            )
            for index, staged in enumerate(files)
        ]
        bundle = SessionBundle(primary=members[0], count=len(members), members=members)

        items = {member.store_key: staged.content for member, staged in zip(members, files)}
        items[legacy_key(role)] = files[0].content

        # Serialized per role: a published bundle never names a swept blob.
        async with self._commit_lock(session_id, role):
            previous = self._metadata.get_bundle(session_id, role)
            sweep_bound = max(self._max_batch_files, len(files), previous.count if previous else 0)
            # StorageError propagates before publish; the prior bundle stays current.
            await self._blobs.scope(session_id).replace(role_sweep_keys(role, sweep_bound), items)
            self._metadata.set_bundle(session_id, role, bundle)

        logger.info(
            "staging_commit session=%s role=%s count=%s bytes=%s",
            _short(session_id),
            role,
            bundle.count,
            sum(member.size for member in members),
        )
        return bundle

    def get_bundle(self, session_id: str, role: FileRole) -> SessionBundle | None:
        return self._metadata.get_bundle(session_id, role)

    async def resolve(self, session_id: str, key: str) -> bytes | None:
        scoped = self._blobs.scope(session_id)
        ref = key_ref(key)
        for candidate in ref.candidates():
            content = await scoped.get(candidate)
            if content is None:
                continue
            if candidate != ref.primary:
                logger.info("staging_legacy_fallback session=%s key=%s legacy=%s", _short(session_id), key, candidate)
            return content
        return None

    async def require(self, session_id: str, key: str) -> bytes:
        content = await self.resolve(session_id, key)
        if content is None:
            raise NotFoundError(FILE_UNAVAILABLE_MESSAGE, code="file_unavailable")
        return content

    async def document_text(self, session_id: str, member: FileDescriptor) -> str:
        if member.extracted_text:
            return member.extracted_text
        content = await self.require(session_id, member.store_key)
        return await self._extract_text(StagedFile(name=member.name, content=content, mime_type=member.mime_type))

    def find_descriptor(self, session_id: str, key: str) -> FileDescriptor | None:
        for role in FILE_ROLES:
            bundle = self._metadata.get_bundle(session_id, role)
            if bundle is None:
                continue
            for member in bundle.members:
                if member.store_key == key:
                    return member
        return None

    async def purge_expired_sessions(self) -> list[str]:
        expired = self._metadata.purge_expired()
        for session_id in expired:
            await self._blobs.scope(session_id).delete_all()
            self._drop_commit_locks(session_id)
        return expired

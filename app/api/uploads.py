from __future__ import annotations

from fastapi import UploadFile

from app.staging.validation import file_too_large

CHUNK_SIZE = 1024 * 64


async def read_upload(file: UploadFile, max_bytes: int) -> bytes:
    filename = file.filename or "uploaded-file"
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await file.read(CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            raise file_too_large(filename, max_bytes)
        chunks.append(chunk)
    return b"".join(chunks)

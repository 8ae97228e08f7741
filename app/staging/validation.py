from __future__ import annotations

from fastapi import status

from app.core.errors import ValidationError
from app.schemas.staging import FileRole

ROLE_EXTENSIONS: dict[FileRole, tuple[str, ...]] = {
    "document": ("pdf",),
    "audio": ("mp3", "wav", "m4a", "ogg", "flac"),
}

EXTENSION_CONTENT_TYPES = {
    "pdf": "application/pdf",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "m4a": "audio/mp4",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
}

MAX_FILENAME_LENGTH = 255

PDF_MAGIC = b"%PDF-"
ID3_MAGIC = b"ID3"
RIFF_MAGIC = b"RIFF"
WAVE_MAGIC = b"WAVE"
OGG_MAGIC = b"OggS"
FLAC_MAGIC = b"fLaC"
MP4_AUDIO_BRANDS = {
    b"M4A ",
    b"M4B ",
    b"isom",
    b"iso2",
    b"mp41",
    b"mp42",
    b"dash",
}


def extension_from_filename(filename: str) -> str:
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].strip().lower()[:20]


def content_type_for(filename: str, declared: str | None = None) -> str:
    declared_clean = (declared or "").split(";")[0].strip().lower()
    if declared_clean and declared_clean != "application/octet-stream":
        return declared_clean[:120]
    return EXTENSION_CONTENT_TYPES.get(extension_from_filename(filename), "application/octet-stream")


def _looks_like_mpeg_audio(content: bytes) -> bool:
    if content.startswith(ID3_MAGIC):
        return True
    return len(content) >= 2 and content[0] == 0xFF and (content[1] & 0xE0) == 0xE0


def _looks_like_mp4_audio(content: bytes) -> bool:
    if len(content) < 12:
        return False
    if content[4:8] != b"ftyp":
        return False
    return content[8:12] in MP4_AUDIO_BRANDS


def validate_upload_signature(*, filename: str, content: bytes) -> None:
    ext = extension_from_filename(filename)

    if ext == "pdf":
        if not content.startswith(PDF_MAGIC):
            raise ValidationError(f"File signature does not match .pdf content: {filename}")
        return

    if ext == "mp3":
        if not _looks_like_mpeg_audio(content):
            raise ValidationError(f"File signature does not match .mp3 content: {filename}")
        return

    if ext == "wav":
        if len(content) < 12 or not content.startswith(RIFF_MAGIC) or content[8:12] != WAVE_MAGIC:
            raise ValidationError(f"File signature does not match .wav content: {filename}")
        return

    if ext == "ogg":
        if not content.startswith(OGG_MAGIC):
            raise ValidationError(f"File signature does not match .ogg content: {filename}")
        return

    if ext == "flac":
        if not content.startswith(FLAC_MAGIC):
            raise ValidationError(f"File signature does not match .flac content: {filename}")
        return

    if ext == "m4a":
        if not _looks_like_mp4_audio(content):
            raise ValidationError(f"File signature does not match .m4a content: {filename}")


def validate_file_type(role: FileRole, filename: str) -> None:
    if len(filename) > MAX_FILENAME_LENGTH:
        raise ValidationError(
            f"File name too long: {filename[:40]}... Maximum is {MAX_FILENAME_LENGTH} characters.",
            code="invalid_file_name",
        )
    allowed = ROLE_EXTENSIONS[role]
    if extension_from_filename(filename) not in allowed:
        raise ValidationError(
            f"Invalid file type: {filename}. Allowed: {', '.join('.' + ext for ext in allowed)}.",
            code="invalid_file_type",
        )


def validate_batch_size(count: int, max_files: int) -> None:
    if count < 1:
        raise ValidationError("At least one file is required.", code="empty_batch")
    if count > max_files:
        raise ValidationError(f"Maximum {max_files} files allowed", code="too_many_files")


def file_too_large(filename: str, max_bytes: int) -> ValidationError:
    return ValidationError(
        f"File too large: {filename}. Maximum allowed size is {max_bytes // (1024 * 1024)} MB.",
        code="file_too_large",
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    )

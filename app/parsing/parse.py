from __future__ import annotations

import hashlib
import logging
from io import BytesIO

from pypdf import PdfReader

from .models import ParsedDoc, ParsedPage

logger = logging.getLogger(__name__)


def _compute_doc_id(text: str, content: bytes) -> str:
    seed = text.encode("utf-8", errors="ignore") if text.strip() else content
    digest = hashlib.sha256(seed).hexdigest()
    return digest[:16]


def _parse_pdf(content: bytes) -> tuple[str, list[ParsedPage], list[str]]:
    warnings: list[str] = []
    pages: list[ParsedPage] = []

    try:
        reader = PdfReader(BytesIO(content))
        text_parts: list[str] = []
        for index, page in enumerate(reader.pages, start=1):
            page_text = (page.extract_text() or "").strip()
            if page_text:
                text_parts.append(page_text)
                pages.append(ParsedPage(page=index, text=page_text))
        if not text_parts:
            warnings.append("No extractable text found in PDF.")
        return "\n".join(text_parts), pages, warnings
    except Exception as exc:  # noqa: BLE001 - pypdf raises many unrelated types on bad input
        warnings.append(f"PDF parsing failed: {exc}")
        return "", pages, warnings


def parse_pdf_bytes(content: bytes, filename: str = "document.pdf") -> ParsedDoc:
    if not filename.lower().endswith(".pdf"):
        raise NotImplementedError(f"Unsupported file type for '{filename}'. Supported types: .pdf")

    text, pages, warnings = _parse_pdf(content)
    return ParsedDoc(
        doc_id=_compute_doc_id(text=text, content=content),
        source_type="pdf",
        filename=filename,
        text=text,
        pages=pages,
        parsing_warnings=warnings,
    )


def extract_document_text(content: bytes, filename: str = "document.pdf") -> str:
    """Best-effort plain text for a PDF; failures yield an empty string."""
    try:
        parsed = parse_pdf_bytes(content, filename)
    except NotImplementedError as exc:
        logger.warning("document_text_unsupported file=%s: %s", filename, exc)
        return ""
    for warning in parsed.parsing_warnings:
        logger.warning("document_text_warning file=%s doc_id=%s: %s", filename, parsed.doc_id, warning)
    logger.info(
        "document_text_extracted file=%s doc_id=%s pages=%s chars=%s",
        filename,
        parsed.doc_id,
        len(parsed.pages),
        len(parsed.text),
    )
    return parsed.text

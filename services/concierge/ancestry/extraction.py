"""
Document -> plain text boundary for ancestry uploads.

The parser never sees bytes. Uploads are validated here (content type and
size ceiling) and turned into text with pypdf for PDFs or a UTF-8 decode for
plain-text exports.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from services.concierge.errors import FileTooLarge, InputValidationError, ParseError

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
TEXT_CONTENT_TYPE = "text/plain"
ALLOWED_CONTENT_TYPES = {PDF_CONTENT_TYPE, TEXT_CONTENT_TYPE}
MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024  # 10MB


@dataclass(frozen=True)
class AncestryDocument:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def validate_document(document: AncestryDocument, max_bytes: int = MAX_FILE_SIZE_BYTES) -> None:
    content_type = (document.content_type or "").split(";")[0].strip().lower()
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise InputValidationError(
            "Formato não suportado. Envie o relatório em PDF ou texto."
        )
    if document.size == 0:
        raise InputValidationError("Arquivo vazio.")
    if document.size > max_bytes:
        raise FileTooLarge(
            f"Arquivo muito grande. Máximo {max_bytes // (1024 * 1024)}MB."
        )


def extract_plain_text(document: AncestryDocument) -> str:
    """Extract text from a validated document. Raises ParseError on unreadable PDFs."""
    content_type = document.content_type.split(";")[0].strip().lower()

    if content_type == TEXT_CONTENT_TYPE:
        return document.data.decode("utf-8", errors="replace")

    try:
        reader = PdfReader(io.BytesIO(document.data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except PdfReadError as exc:
        logger.warning("Unreadable PDF upload %r: %s", document.filename, exc)
        raise ParseError("Erro ao processar arquivo de DNA: PDF ilegível.") from exc

    return "\n".join(pages)

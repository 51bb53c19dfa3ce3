from __future__ import annotations

import logging
from pathlib import Path
from uuid import uuid4

from .converter import FormatNormalizer, detect_file_type, mime_type_for
from .database import LedgerStore, utcnow
from .errors import DocumentNotFound, InputError
from .models import Document
from .page_counter import count_pdf_pages

logger = logging.getLogger(__name__)


class DocumentService:
    """Registers stored uploads and detects their page count exactly once."""

    def __init__(self, store: LedgerStore, normalizer: FormatNormalizer) -> None:
        self.store = store
        self.normalizer = normalizer

    def register_document(self, owner_id: str, filename: str, stored_path: str, mime_type: str = "") -> Document:
        """
        Record a file the upload receiver has already validated and stored.

        Raises:
            InputError: If the stored file does not exist
            UnsupportedDocumentType: If the type is not printable
        """
        path = Path(stored_path)
        if not path.is_file():
            raise InputError(f"Stored file not found: {stored_path}", {"stored_path": stored_path})

        file_type = detect_file_type(mime_type, filename or path.name)
        document = Document(
            id=uuid4().hex,
            owner_id=owner_id,
            filename=filename or path.name,
            stored_path=str(path),
            mime_type=mime_type or mime_type_for(file_type),
            file_size=path.stat().st_size,
            uploaded_at=utcnow(),
        )
        self.store.insert_document(document)
        logger.info(f"Registered document {document.id} ({document.filename}, {file_type}) for {owner_id}")
        return document

    def get_document(self, document_id: str, owner_id: str | None = None) -> Document:
        document = self.store.get_document(document_id)
        if document is None or (owner_id is not None and document.owner_id != owner_id):
            raise DocumentNotFound(document_id)
        return document

    def ensure_page_count(self, document: Document) -> int:
        """
        Return the document's page count, detecting it on first use.

        Detection normalizes the file to PDF, counts it, and drops the
        conversion output. The first stored count is final.

        Raises:
            ConversionFailed: If no strategy could produce a PDF
            PageCountUnavailable: If the PDF cannot be read or is empty
        """
        if document.detected_page_count:
            return document.detected_page_count

        file_type = detect_file_type(document.mime_type, document.filename)
        normalized = self.normalizer.normalize(document.stored_path, file_type)
        try:
            page_count = count_pdf_pages(normalized.pdf_path)
        finally:
            normalized.discard()

        stored = self.store.set_document_page_count(document.id, page_count)
        document.detected_page_count = stored
        logger.info(f"Document {document.id} has {stored} pages (via {normalized.strategy})")
        return stored

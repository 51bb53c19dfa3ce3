"""Authoritative page counts for normalized PDFs."""

from __future__ import annotations

import logging
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from .errors import PageCountUnavailable

logger = logging.getLogger(__name__)


def count_pdf_pages(pdf_path: Path | str) -> int:
    """
    Count the pages of a PDF.

    Raises:
        PageCountUnavailable: If the file is missing, unreadable, corrupt, or
            has no pages. Zero is never returned.
    """
    path = Path(pdf_path)
    try:
        with path.open("rb") as handle:
            reader = PdfReader(handle)
            page_count = len(reader.pages)
    except (OSError, PyPdfError, ValueError, KeyError, TypeError) as exc:
        logger.warning(f"PDF page count failed for {path}: {exc}")
        raise PageCountUnavailable(str(path), str(exc)) from exc

    if page_count <= 0:
        raise PageCountUnavailable(str(path), "document has no pages")

    logger.info(f"PDF parsed: {path.name} has {page_count} pages")
    return page_count

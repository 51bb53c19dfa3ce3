"""
Exceptions raised by the settlement and reconciliation pipelines.

Exception Hierarchy:
    PrintBackendError (base)
    ├── InputError                - rejected before any side effect
    │   ├── InvalidRange
    │   └── UnsupportedDocumentType
    ├── NotFoundError
    │   ├── DocumentNotFound
    │   ├── BalanceNotFound
    │   ├── TransactionNotFound
    │   └── PrintJobNotFound
    ├── ConversionFailed          - every normalization strategy exhausted
    ├── PageCountUnavailable      - corrupt or empty normalized PDF
    ├── InsufficientBalance       - expected business outcome, prompts a top-up
    ├── WebhookAuthError          - bad or missing gateway credentials
    └── WebhookMismatch           - transfer amount does not cover the transaction
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional


class PrintBackendError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class InputError(PrintBackendError):
    """Malformed request values (ranges, counts, sizes)."""


class InvalidRange(InputError):
    def __init__(self, expression: str, total_pages: int):
        super().__init__(
            f"Page range '{expression}' selects no pages of a {total_pages}-page document",
            {"page_range": expression, "total_pages": total_pages},
        )
        self.expression = expression
        self.total_pages = total_pages


class UnsupportedDocumentType(InputError):
    def __init__(self, mime_type: str, filename: str = ""):
        super().__init__(
            f"Unsupported document type: {mime_type or filename}",
            {"mime_type": mime_type, "filename": filename},
        )


class NotFoundError(PrintBackendError):
    """Base for missing records."""


class DocumentNotFound(NotFoundError):
    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}", {"document_id": document_id})


class BalanceNotFound(NotFoundError):
    def __init__(self, student_id: str):
        super().__init__(f"No page balance for student: {student_id}", {"student_id": student_id})


class TransactionNotFound(NotFoundError):
    def __init__(self, transaction_id: str):
        super().__init__(f"Transaction not found: {transaction_id}", {"transaction_id": transaction_id})


class PrintJobNotFound(NotFoundError):
    def __init__(self, job_id: str):
        super().__init__(f"Print job not found: {job_id}", {"job_id": job_id})


class ConversionFailed(PrintBackendError):
    """Raised once every conversion strategy has been tried without producing a PDF."""

    def __init__(self, source: str, attempted: Iterable[str]):
        self.attempted = list(attempted)
        super().__init__(
            f"Could not convert {source} to PDF (tried: {', '.join(self.attempted) or 'nothing'})",
            {"source": source, "attempted": self.attempted},
        )


class PageCountUnavailable(PrintBackendError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Cannot count pages of {path}: {reason}", {"path": path})
        self.reason = reason


class InsufficientBalance(PrintBackendError):
    """The student cannot afford the job. Nothing has been mutated."""

    def __init__(self, student_id: str, requested: int, available: int):
        super().__init__(
            f"Insufficient page balance: requested {requested}, available {available}",
            {"student_id": student_id, "requested": requested, "available": available},
        )
        self.student_id = student_id
        self.requested = requested
        self.available = available


class WebhookAuthError(PrintBackendError):
    pass


class WebhookMismatch(PrintBackendError):
    def __init__(self, transaction_id: str, expected: Any, received: Any):
        super().__init__(
            f"Transfer amount {received} does not cover transaction {transaction_id} (expected {expected})",
            {"transaction_id": transaction_id, "expected": str(expected), "received": str(received)},
        )
        self.transaction_id = transaction_id
        self.expected = expected
        self.received = received

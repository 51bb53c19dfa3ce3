"""
Print-job settlement.

``settle_print_job`` runs the whole pipeline for one request:

    document -> normalized PDF -> page count -> page range -> cost -> debit

Every step before the debit is free of side effects on balances, so any
failure there (bad range, conversion, unreadable PDF) leaves the student's
balance untouched. The debit is the last step and the only atomic one.
"""

from __future__ import annotations

import logging

from .billing import DEFAULT_A3_MULTIPLIER, calculate_cost, resolve_effective_pages
from .documents import DocumentService
from .errors import InputError
from .ledger import BalanceLedger
from .models import PrintJob, PrintJobDraft, PrintJobRequest

logger = logging.getLogger(__name__)


class SettlementOrchestrator:
    def __init__(
        self,
        documents: DocumentService,
        ledger: BalanceLedger,
        a3_multiplier: float = DEFAULT_A3_MULTIPLIER,
    ) -> None:
        self.documents = documents
        self.ledger = ledger
        self.a3_multiplier = a3_multiplier

    def quote(self, request: PrintJobRequest) -> PrintJobDraft:
        """Resolve pages for a request without charging anything."""
        if request.copies < 1:
            raise InputError("Copies must be a positive integer", {"copies": request.copies})

        document = self.documents.get_document(request.document_id, owner_id=request.owner_id)
        total_pages = self.documents.ensure_page_count(document)
        resolved_pages = resolve_effective_pages(request.page_range, total_pages)

        page_range = (request.page_range or "").strip() or None
        return PrintJobDraft(
            printer_id=request.printer_id,
            document_id=document.id,
            total_pages=total_pages,
            resolved_pages=resolved_pages,
            copies=request.copies,
            paper_size=request.paper_size,
            duplex=request.duplex,
            page_range=page_range,
        )

    def settle_print_job(self, request: PrintJobRequest) -> PrintJob:
        """
        Price and charge a print request, persisting the PrintJob.

        Raises:
            InputError / InvalidRange: Bad copies or a range selecting nothing
            DocumentNotFound: Unknown document, or not owned by the requester
            ConversionFailed: The document could not be normalized
            PageCountUnavailable: The normalized PDF is unreadable
            BalanceNotFound: The student has no balance
            InsufficientBalance: The balance does not cover the cost
        """
        draft = self.quote(request)
        cost = calculate_cost(
            draft.resolved_pages,
            draft.copies,
            draft.paper_size,
            a3_multiplier=self.a3_multiplier,
            duplex=draft.duplex,
        )
        logger.info(
            f"Settling print of document {draft.document_id} for {request.owner_id}: "
            f"{draft.resolved_pages}/{draft.total_pages} pages x {draft.copies} {draft.paper_size.value} = {cost}"
        )
        return self.ledger.debit(request.owner_id, cost, draft)

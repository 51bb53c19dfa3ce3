from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from omegaconf import DictConfig
from starlette.concurrency import run_in_threadpool

from .configuration import configure_logging, load_settings
from .converter import FormatNormalizer
from .database import LedgerStore
from .documents import DocumentService
from .errors import (
    ConversionFailed,
    InputError,
    InsufficientBalance,
    NotFoundError,
    PageCountUnavailable,
    PrintJobNotFound,
    WebhookAuthError,
)
from .ledger import BalanceLedger
from .models import (
    BalanceEntries,
    BalanceOpenRequest,
    Document,
    DocumentRegistration,
    PageBalance,
    PaymentIntent,
    PaymentRequest,
    PaymentStatus,
    PrintJob,
    PrintJobRequest,
    WebhookEvent,
    WebhookOutcome,
    WebhookResult,
)
from .payments import PaymentService
from .settlement import SettlementOrchestrator
from .utils import ensure_directory
from .webhook import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


class Services:
    """Everything the routes need, built once per process around one store."""

    def __init__(self, settings: DictConfig) -> None:
        self.settings = settings
        ensure_directory(Path(settings.storage.temp_root))
        self.store = LedgerStore(Path(settings.database.path), timeout=settings.database.timeout)
        self.ledger = BalanceLedger(self.store)
        self.documents = DocumentService(self.store, FormatNormalizer.from_settings(settings))
        self.settlement = SettlementOrchestrator(
            self.documents, self.ledger, a3_multiplier=settings.billing.a3_multiplier
        )
        self.payments = PaymentService.from_settings(self.store, settings)
        self.reconciler = WebhookReconciler(self.ledger, settings.webhook.api_key)


def create_app(settings: Optional[DictConfig] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings)

    app = FastAPI(title="Campus Print API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.services = Services(settings)
    app.include_router(router)
    return app


def get_services(request: Request) -> Services:
    return request.app.state.services


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=exc.message)


@router.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@router.post("/documents", response_model=Document, status_code=201)
def register_document(payload: DocumentRegistration, services: Services = Depends(get_services)) -> Document:
    try:
        return services.documents.register_document(
            owner_id=payload.owner_id,
            filename=payload.filename,
            stored_path=payload.stored_path,
            mime_type=payload.mime_type,
        )
    except InputError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc


@router.get("/documents/{document_id}", response_model=Document)
def get_document(document_id: str, services: Services = Depends(get_services)) -> Document:
    try:
        return services.documents.get_document(document_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc


@router.post("/students/{student_id}/balance", response_model=PageBalance, status_code=201)
def open_balance(
    student_id: str, payload: BalanceOpenRequest, response: Response, services: Services = Depends(get_services)
) -> PageBalance:
    """201 when the balance is created; 200 with the untouched balance when it already exists."""
    balance, created = services.ledger.ensure_balance(student_id, payload.default_pages, payload.semester)
    if not created:
        response.status_code = 200
    return balance


@router.get("/students/{student_id}/balance", response_model=PageBalance)
def get_balance(student_id: str, services: Services = Depends(get_services)) -> PageBalance:
    try:
        return services.ledger.get_balance(student_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc


@router.get("/students/{student_id}/balance/entries", response_model=BalanceEntries)
def list_balance_entries(student_id: str, services: Services = Depends(get_services)) -> BalanceEntries:
    return BalanceEntries(student_id=student_id, entries=services.ledger.list_entries(student_id))


@router.post("/print-jobs", status_code=201, response_model=PrintJob)
def create_print_job(payload: PrintJobRequest, services: Services = Depends(get_services)) -> Any:
    try:
        return services.settlement.settle_print_job(payload)
    except InsufficientBalance as exc:
        # Distinct from failures so the client can offer a top-up
        return JSONResponse(
            status_code=402,
            content={
                "detail": exc.message,
                "code": "INSUFFICIENT_BALANCE",
                "requested": exc.requested,
                "available": exc.available,
            },
        )
    except InputError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    except (ConversionFailed, PageCountUnavailable) as exc:
        raise HTTPException(status_code=422, detail=exc.message) from exc


@router.get("/print-jobs/{job_id}", response_model=PrintJob)
def get_print_job(job_id: str, services: Services = Depends(get_services)) -> PrintJob:
    job = services.store.get_print_job(job_id)
    if job is None:
        raise _not_found(PrintJobNotFound(job_id))
    return job


@router.post("/payments", response_model=PaymentIntent, status_code=201)
def create_payment(payload: PaymentRequest, services: Services = Depends(get_services)) -> PaymentIntent:
    try:
        return services.payments.create_payment(payload.student_id, payload.amount, payload.page_quantity)
    except InputError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except NotFoundError as exc:
        raise _not_found(exc) from exc


@router.get("/payments/{transaction_id}/status", response_model=PaymentStatus)
def payment_status(transaction_id: str, services: Services = Depends(get_services)) -> PaymentStatus:
    try:
        return services.payments.get_status(transaction_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc


@router.post("/payments/sepay-webhook", response_model=WebhookResult)
async def sepay_webhook(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> Any:
    try:
        services.reconciler.authenticate(authorization)
    except WebhookAuthError as exc:
        raise HTTPException(status_code=401, detail=exc.message) from exc

    try:
        payload = await request.json()
        event = WebhookEvent.from_payload(payload)
    except ValueError as exc:
        # pydantic's ValidationError and JSONDecodeError are both ValueErrors
        raise HTTPException(status_code=400, detail=f"Invalid webhook payload: {exc}") from exc

    try:
        return await run_in_threadpool(services.reconciler.reconcile, event)
    except Exception:
        logger.exception(f"Webhook processing failed; manual reconciliation required. Payload: {event.raw}")
        if services.settings.webhook.ack_on_internal_error:
            return WebhookResult(success=False, outcome=WebhookOutcome.ERROR)
        raise HTTPException(status_code=500, detail="Could not process payment webhook")


app = create_app()

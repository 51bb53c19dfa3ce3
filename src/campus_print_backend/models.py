from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PaperSize(str, Enum):
    A4 = "A4"
    A3 = "A3"


class PrintJobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class WebhookOutcome(str, Enum):
    CREDITED = "credited"
    ALREADY_APPLIED = "already_applied"
    IGNORED = "ignored"
    AMOUNT_MISMATCH = "amount_mismatch"
    ERROR = "error"


class Document(BaseModel):
    id: str
    owner_id: str
    filename: str
    stored_path: str
    mime_type: str
    file_size: int
    detected_page_count: Optional[int] = None
    uploaded_at: datetime


class DocumentRegistration(BaseModel):
    owner_id: str
    filename: str
    stored_path: str
    mime_type: str = ""


class PrintJobRequest(BaseModel):
    printer_id: str
    document_id: str
    owner_id: str
    copies: int = Field(default=1, ge=1)
    paper_size: PaperSize = PaperSize.A4
    duplex: bool = False
    page_range: Optional[str] = "all"


class PrintJobDraft(BaseModel):
    """Everything needed to persist a PrintJob except its id and status."""

    printer_id: str
    document_id: str
    total_pages: int
    resolved_pages: int
    copies: int
    paper_size: PaperSize
    duplex: bool
    page_range: Optional[str] = None


class PrintJob(BaseModel):
    id: str
    student_id: str
    printer_id: str
    document_id: str
    total_pages: int
    resolved_pages: int
    copies: int
    paper_size: PaperSize
    duplex: bool
    page_range: Optional[str] = None
    cost: int
    status: PrintJobStatus
    created_at: datetime


class PageBalance(BaseModel):
    student_id: str
    current_balance: int
    default_pages: int
    purchased_pages: int = 0
    used_pages: int = 0
    semester: Optional[str] = None
    last_updated: datetime


class BalanceOpenRequest(BaseModel):
    default_pages: int = Field(ge=0)
    semester: Optional[str] = None


class BalanceEntry(BaseModel):
    id: str
    student_id: str
    delta: int
    print_job_id: Optional[str] = None
    transaction_id: Optional[str] = None
    created_at: datetime


class Transaction(BaseModel):
    id: str
    student_id: str
    amount: Decimal
    pages_added: int
    status: TransactionStatus
    payment_method: Optional[str] = None
    gateway_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class CreditResult(BaseModel):
    applied: bool
    status: TransactionStatus


class PaymentRequest(BaseModel):
    student_id: str
    amount: Decimal
    page_quantity: int


class PaymentIntent(BaseModel):
    trans_id: str
    memo: str
    qr_url: str


class PaymentStatus(BaseModel):
    status: TransactionStatus
    pages: int


class WebhookEvent(BaseModel):
    """Inbound SePay-style transfer notification."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    external_id: Optional[int | str] = Field(default=None, alias="id")
    gateway: Optional[str] = None
    transfer_type: str = Field(default="in", alias="transferType")
    transfer_amount: Decimal = Field(alias="transferAmount")
    reference_code: Optional[str] = Field(default=None, alias="referenceCode")
    content: Optional[str] = None
    description: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WebhookEvent":
        event = cls.model_validate(payload)
        event.raw = dict(payload)
        return event


class WebhookResult(BaseModel):
    success: bool = True
    outcome: WebhookOutcome
    transaction_id: Optional[str] = None


class BalanceEntries(BaseModel):
    student_id: str
    entries: List[BalanceEntry]

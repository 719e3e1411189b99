"""
Pydantic Schemas for Request/Response Validation

Wire format of the split-bill API:
- Amounts in requests are decimal major units ("12.50")
- Amounts in responses are integer cents
- The cover pseudo-item is addressed with item_id "cover"

Author: Khalil Bannouri
Version: 1.0.0
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from splitbill.services.settlement.entities import (
    COVER_ITEM_ID,
    PaymentMethod,
    SessionPayment,
    SessionPaymentItem,
)
from splitbill.services.settlement.planner import SelectionCandidate
from splitbill.services.settlement.remaining import RemainingItems, RemainingLine
from splitbill.services.settlement.status import SettlementStatus
from splitbill.services.settlement.summary import FiscalSummary

ItemId = Union[int, str]


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class SelectionLine(BaseModel):
    """Requested quantity of one remaining line."""
    item_id: ItemId = Field(..., examples=[12, "cover"])
    quantity: int = Field(..., ge=0, le=999, examples=[2])

    @field_validator('item_id')
    @classmethod
    def validate_item_id(cls, v: ItemId) -> ItemId:
        if isinstance(v, str) and v != COVER_ITEM_ID:
            if v.isdigit():
                return int(v)
            raise ValueError(f'item_id must be an order item id or "{COVER_ITEM_ID}"')
        return v


class SelectionRequest(BaseModel):
    """Item selection to clamp and price."""
    items: List[SelectionLine] = Field(default_factory=list)
    covers: int = Field(default=0, ge=0, examples=[2])


class EqualShareRequest(BaseModel):
    """Equal split ("alla romana") of the remaining amount."""
    total_people: int = Field(..., examples=[4])
    paying_people: int = Field(default=1, examples=[1])


class FiscalFlagUpdate(BaseModel):
    """Session-level SMAC flag, used when the bill is settled without split payments."""
    fiscal_flag: bool = Field(..., examples=[True])


class PaymentCreate(BaseModel):
    """Request schema for submitting a split payment."""
    amount: Optional[Decimal] = Field(None, examples=["40.00"])
    method: PaymentMethod = Field(default=PaymentMethod.CASH, examples=["card"])
    notes: Optional[str] = Field(None, max_length=500)
    fiscal_flag: bool = Field(default=False)
    tendered: Optional[Decimal] = Field(None, examples=["50.00"])
    items: List[SelectionLine] = Field(default_factory=list)
    covers: int = Field(default=0, ge=0)
    idempotency_key: Optional[str] = Field(None, max_length=64)


class DemoSessionRequest(BaseModel):
    """Seed parameters for the development demo session."""
    covers: int = Field(default=4, ge=0, le=50)
    cover_unit: Optional[Decimal] = Field(None, ge=0, description="Defaults to COVER_CHARGE")
    cover_included: bool = Field(default=False)
    latency: float = Field(default=0.0, ge=0, le=5)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None
    remaining_cents: Optional[int] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    store: str
    change_bus: str
    notification_sink: str
    timestamp: datetime


class RemainingLineResponse(BaseModel):
    item_id: ItemId
    name: str
    unit_price_cents: int
    ordered: int
    settled: int
    remaining: int
    order_number: Optional[int] = None

    @classmethod
    def from_line(cls, line: RemainingLine) -> "RemainingLineResponse":
        return cls(
            item_id=line.item_id,
            name=line.name,
            unit_price_cents=line.unit_price_cents,
            ordered=line.ordered,
            settled=line.settled,
            remaining=line.remaining,
            order_number=line.order_number,
        )


class RemainingItemsResponse(BaseModel):
    session_id: int
    lines: List[RemainingLineResponse]
    covers_remaining: int
    cover_unit_cents: int
    total_cents: int

    @classmethod
    def from_remaining(cls, session_id: int, remaining: RemainingItems) -> "RemainingItemsResponse":
        return cls(
            session_id=session_id,
            lines=[RemainingLineResponse.from_line(line) for line in remaining],
            covers_remaining=remaining.covers_remaining,
            cover_unit_cents=remaining.cover_unit_cents,
            total_cents=remaining.total_cents,
        )


class SettlementStatusResponse(BaseModel):
    session_id: int
    total_cents: int
    paid_cents: int
    remaining_cents: int
    display_remaining_cents: int
    is_overpaid: bool
    fiscal_status: Union[bool, str]
    fiscal_cents: int
    non_fiscal_cents: int
    payment_count: int
    is_open: bool
    can_close: bool

    @classmethod
    def from_status(cls, status: SettlementStatus) -> "SettlementStatusResponse":
        return cls(
            session_id=status.session_id,
            total_cents=status.total_cents,
            paid_cents=status.paid_cents,
            remaining_cents=status.remaining_cents,
            display_remaining_cents=status.display_remaining_cents,
            is_overpaid=status.is_overpaid,
            fiscal_status=status.fiscal_status.as_flag(),
            fiscal_cents=status.fiscal_cents,
            non_fiscal_cents=status.non_fiscal_cents,
            payment_count=status.payment_count,
            is_open=status.is_open,
            can_close=status.can_close,
        )


class PaymentItemResponse(BaseModel):
    order_item_id: ItemId
    quantity: int
    name: str
    unit_price_cents: int

    @classmethod
    def from_item(cls, item: SessionPaymentItem) -> "PaymentItemResponse":
        return cls(
            order_item_id=item.order_item_id,
            quantity=item.quantity,
            name=item.name,
            unit_price_cents=item.unit_price_cents,
        )


class SelectionResponse(BaseModel):
    """Clamped selection and the candidate it pre-fills."""
    session_id: int
    amount_cents: int
    items: List[PaymentItemResponse]
    note: str

    @classmethod
    def from_candidate(cls, session_id: int, candidate: SelectionCandidate) -> "SelectionResponse":
        return cls(
            session_id=session_id,
            amount_cents=candidate.amount_cents,
            items=[PaymentItemResponse.from_item(item) for item in candidate.items],
            note=candidate.note,
        )


class EqualShareResponse(BaseModel):
    session_id: int
    amount_cents: int
    remaining_cents: int
    note: str


class PaymentResponse(BaseModel):
    """Response schema for a single ledger entry."""
    id: int
    session_id: int
    amount_cents: int
    method: str
    paid_at: datetime
    notes: Optional[str]
    fiscal_flag: bool
    items: List[PaymentItemResponse]
    receipt_number: str

    @classmethod
    def from_payment(cls, payment: SessionPayment) -> "PaymentResponse":
        return cls(
            id=payment.id,
            session_id=payment.session_id,
            amount_cents=payment.amount_cents,
            method=payment.method.value,
            paid_at=payment.paid_at,
            notes=payment.notes,
            fiscal_flag=payment.fiscal_flag,
            items=[PaymentItemResponse.from_item(item) for item in payment.items],
            receipt_number=f"P-{payment.id}",
        )


class PaymentListResponse(BaseModel):
    """Response for listing a session's payments."""
    total: int
    payments: List[PaymentResponse]


class SubmitResponse(BaseModel):
    """Response after a successful submit."""
    success: bool = True
    message: str
    payment: PaymentResponse
    status: SettlementStatusResponse
    closed: bool
    change_cents: Optional[int] = None


class ReceiptItemResponse(BaseModel):
    name: str
    quantity: int
    unit_price_cents: int
    total_cents: int


class ReceiptResponse(BaseModel):
    receipt_number: str
    payment_id: int
    session_id: int
    date: str
    time: str
    shop_name: str
    shop_address: Optional[str]
    shop_phone: Optional[str]
    items: List[ReceiptItemResponse]
    subtotal_cents: int
    iva_rate: float
    iva_cents: int
    total_cents: int
    payment_method: str
    fiscal_flag: bool
    notes: Optional[str]
    text: str
    export_task_id: Optional[str] = None


class FiscalSummaryResponse(BaseModel):
    day: date
    fiscal_cents: int
    non_fiscal_cents: int
    total_cents: int
    revenue_by_method: dict[str, int]
    order_count: int
    standalone_count: int
    session_count: int
    cancelled_count: int

    @classmethod
    def from_summary(cls, summary: FiscalSummary) -> "FiscalSummaryResponse":
        return cls(
            day=summary.day,
            fiscal_cents=summary.fiscal_cents,
            non_fiscal_cents=summary.non_fiscal_cents,
            total_cents=summary.total_cents,
            revenue_by_method=summary.revenue_by_method,
            order_count=summary.order_count,
            standalone_count=summary.standalone_count,
            session_count=summary.session_count,
            cancelled_count=summary.cancelled_count,
        )


class DemoSessionResponse(BaseModel):
    session_id: int
    total_cents: int
    effective_total_cents: int
    item_ids: List[int]

"""
Settlement Entities

Typed, validated representations of the data the engine works on.
They are independent of the persistence mechanism: every store converts
its rows into these frozen dataclasses before handing them to the engine.

Amounts are integer cents throughout (see money.py).

Author: Khalil Bannouri
Version: 1.0.0
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union


# =============================================================================
# ENUMS
# =============================================================================

class PaymentMethod(str, Enum):
    """Methods accepted for a single settlement event."""
    CASH = "cash"
    CARD = "card"
    ONLINE = "online"


class CloseMethod(str, Enum):
    """How a session was finally settled."""
    CASH = "cash"
    CARD = "card"
    ONLINE = "online"
    SPLIT = "split"


class SessionStatus(str, Enum):
    """Dining tab lifecycle."""
    OPEN = "open"
    CLOSED = "closed"


class OrderStatus(str, Enum):
    """Kitchen workflow of a single ticket."""
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Order item rows are keyed by positive integers; the cover pseudo-item
# uses a string key so the two can never collide.
ItemKey = Union[int, str]
COVER_ITEM_ID: str = "cover"
COVER_ITEM_NAME = "Cover charge"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ORDERS
# =============================================================================

@dataclass(frozen=True)
class OrderItem:
    """
    A single ordered line.

    Attributes:
        id: Globally unique row identifier (not the menu item id)
        order_id: Parent order
        name: Menu item name, denormalized for display
        unit_price_cents: Price of one unit
        quantity: Units ordered
        notes: Free-text kitchen notes
    """
    id: int
    order_id: int
    name: str
    unit_price_cents: int
    quantity: int
    notes: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.id, bool) or not isinstance(self.id, int) or self.id <= 0:
            raise ValueError("OrderItem id must be a positive integer")
        if self.unit_price_cents < 0:
            raise ValueError("OrderItem price cannot be negative")
        if self.quantity < 1:
            raise ValueError("OrderItem quantity must be at least 1")

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class Order:
    """
    One ticket ("comanda") of a session, or a standalone order.

    The fiscal flag is only authoritative for standalone orders and for
    sessions that were settled without split payments.
    """
    id: int
    total_cents: int
    session_id: Optional[int] = None
    number: int = 1
    fiscal_flag: bool = False
    payment_method: PaymentMethod = PaymentMethod.CASH
    status: OrderStatus = OrderStatus.PENDING
    items: tuple[OrderItem, ...] = ()
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.total_cents < 0:
            raise ValueError("Order total cannot be negative")
        if self.number < 1:
            raise ValueError("Order number starts at 1")
        object.__setattr__(self, "items", tuple(self.items))
        for item in self.items:
            if item.order_id != self.id:
                raise ValueError(f"OrderItem {item.id} does not belong to order {self.id}")

    @property
    def is_cancelled(self) -> bool:
        return self.status == OrderStatus.CANCELLED

    @property
    def is_standalone(self) -> bool:
        return self.session_id is None


# =============================================================================
# SESSION
# =============================================================================

@dataclass(frozen=True)
class Session:
    """
    A dining tab.

    Attributes:
        id: Session identifier
        total_cents: Gross total of the orders (tax inclusive). Includes the
            cover charge only when cover_included is True
        covers: Number of persons at the table
        cover_unit_cents: Per-person cover price
        cover_included: Whether total_cents already folds in the cover
        status: open or closed
        fiscal_flag: Session-level SMAC flag used when no split payment exists
    """
    id: int
    total_cents: int
    covers: int = 0
    cover_unit_cents: int = 0
    cover_included: bool = True
    status: SessionStatus = SessionStatus.OPEN
    fiscal_flag: bool = False
    table_name: Optional[str] = None
    opened_at: datetime = field(default_factory=utcnow)
    closed_at: Optional[datetime] = None
    close_method: Optional[CloseMethod] = None

    def __post_init__(self) -> None:
        if self.total_cents < 0:
            raise ValueError("Session total cannot be negative")
        if self.covers < 0:
            raise ValueError("Covers cannot be negative")
        if self.cover_unit_cents < 0:
            raise ValueError("Cover price cannot be negative")

    @property
    def is_open(self) -> bool:
        return self.status == SessionStatus.OPEN

    @property
    def has_cover_charge(self) -> bool:
        """Whether the cover pseudo-item exists for this session."""
        return self.covers > 0 and self.cover_unit_cents > 0

    @property
    def cover_total_cents(self) -> int:
        return self.covers * self.cover_unit_cents if self.has_cover_charge else 0

    @property
    def effective_total_cents(self) -> int:
        """Amount that must be paid before the session can close."""
        if self.cover_included:
            return self.total_cents
        return self.total_cents + self.cover_total_cents

    def closed(self, method: CloseMethod, fiscal_flag: bool, at: Optional[datetime] = None) -> "Session":
        return replace(
            self,
            status=SessionStatus.CLOSED,
            close_method=method,
            fiscal_flag=fiscal_flag,
            closed_at=at or utcnow(),
        )


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

@dataclass(frozen=True)
class SessionPaymentItem:
    """Quantity of one order line (or of the cover) settled by a payment."""
    order_item_id: ItemKey
    quantity: int
    name: str
    unit_price_cents: int

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise ValueError("Settled quantity must be at least 1")
        if self.unit_price_cents < 0:
            raise ValueError("Settled unit price cannot be negative")
        if isinstance(self.order_item_id, str) and self.order_item_id != COVER_ITEM_ID:
            raise ValueError(f"Unknown pseudo-item key: {self.order_item_id!r}")

    @classmethod
    def for_cover(cls, quantity: int, unit_price_cents: int) -> "SessionPaymentItem":
        return cls(
            order_item_id=COVER_ITEM_ID,
            quantity=quantity,
            name=COVER_ITEM_NAME,
            unit_price_cents=unit_price_cents,
        )

    @property
    def is_cover(self) -> bool:
        return self.order_item_id == COVER_ITEM_ID

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class PaymentDraft:
    """A payment that passed validation and is about to be appended."""
    session_id: int
    amount_cents: int
    method: PaymentMethod
    notes: Optional[str] = None
    fiscal_flag: bool = False
    items: tuple[SessionPaymentItem, ...] = ()
    idempotency_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("Payment amount must be positive")
        object.__setattr__(self, "method", PaymentMethod(self.method))
        object.__setattr__(self, "items", tuple(self.items))


@dataclass(frozen=True)
class SessionPayment:
    """
    One settlement event. Append-only: never edited or deleted by the engine.

    Attributes:
        id: Ledger entry identifier
        session_id: Session the payment belongs to
        amount_cents: Amount settled
        method: cash, card or online
        paid_at: Commit timestamp
        notes: Free text (e.g. who paid)
        fiscal_flag: Whether the payment was registered with SMAC
        items: Item-level breakdown, empty for amount-based splits
        idempotency_key: Key that made the append at-most-once
    """
    id: int
    session_id: int
    amount_cents: int
    method: PaymentMethod
    paid_at: datetime = field(default_factory=utcnow)
    notes: Optional[str] = None
    fiscal_flag: bool = False
    items: tuple[SessionPaymentItem, ...] = ()
    idempotency_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("Payment amount must be positive")
        object.__setattr__(self, "method", PaymentMethod(self.method))
        object.__setattr__(self, "items", tuple(self.items))

    @classmethod
    def from_draft(cls, draft: PaymentDraft, payment_id: int, paid_at: Optional[datetime] = None) -> "SessionPayment":
        return cls(
            id=payment_id,
            session_id=draft.session_id,
            amount_cents=draft.amount_cents,
            method=draft.method,
            paid_at=paid_at or utcnow(),
            notes=draft.notes,
            fiscal_flag=draft.fiscal_flag,
            items=draft.items,
            idempotency_key=draft.idempotency_key,
        )

    @property
    def is_item_based(self) -> bool:
        return len(self.items) > 0

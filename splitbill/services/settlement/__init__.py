"""
Settlement Engine

Split-bill settlement of restaurant table sessions.

Pure part (no I/O), importable from here:
    - entities:  typed session / order / ledger records
    - remaining: remaining-items aggregator
    - status:    settlement status and fiscal aggregation
    - planner:   item-selection planner and equal split

Stateful part, imported from its own module:
    - ledger.PaymentLedger
    - composer.ManualPaymentComposer
    - workspace.SettlementWorkspace
    - summary.build_daily_summary
"""

from splitbill.services.settlement.entities import (
    COVER_ITEM_ID,
    CloseMethod,
    Order,
    OrderItem,
    OrderStatus,
    PaymentDraft,
    PaymentMethod,
    Session,
    SessionPayment,
    SessionPaymentItem,
    SessionStatus,
)
from splitbill.services.settlement.errors import (
    ConcurrencyConflict,
    ErrorCode,
    InvariantViolation,
    SessionNotFound,
    SettlementError,
    StoreFailure,
    ValidationError,
)
from splitbill.services.settlement.money import format_cents, from_cents, to_cents
from splitbill.services.settlement.planner import (
    ItemSelectionPlanner,
    SelectionCandidate,
    clamp_selection,
    equal_share,
)
from splitbill.services.settlement.remaining import (
    RemainingItems,
    RemainingLine,
    aggregate_remaining_items,
    ordered_quantities,
    overdrawn_items,
    settled_quantities,
)
from splitbill.services.settlement.status import (
    FiscalStatus,
    SettlementStatus,
    compute_settlement_status,
)

__all__ = [
    "COVER_ITEM_ID",
    "CloseMethod",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentDraft",
    "PaymentMethod",
    "Session",
    "SessionPayment",
    "SessionPaymentItem",
    "SessionStatus",
    "ConcurrencyConflict",
    "ErrorCode",
    "InvariantViolation",
    "SessionNotFound",
    "SettlementError",
    "StoreFailure",
    "ValidationError",
    "format_cents",
    "from_cents",
    "to_cents",
    "ItemSelectionPlanner",
    "SelectionCandidate",
    "clamp_selection",
    "equal_share",
    "RemainingItems",
    "RemainingLine",
    "aggregate_remaining_items",
    "ordered_quantities",
    "overdrawn_items",
    "settled_quantities",
    "FiscalStatus",
    "SettlementStatus",
    "compute_settlement_status",
]

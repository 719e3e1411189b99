"""
Settlement Status Aggregator

Pure function over (session, orders, payments) deriving the paid amount,
the remaining amount and the session's tri-state fiscal (SMAC) status.
It holds no state: callers recompute it on every ledger change.

Fiscal status:
    - ALL:     something was paid and every payment carries the flag
    - NONE:    no payment carries the flag (or nothing was split and the
               order/session flag is off)
    - PARTIAL: some payments carry it, some don't

Author: Khalil Bannouri
Version: 1.0.0
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Union

from splitbill.services.settlement.entities import Order, Session, SessionPayment
from splitbill.services.settlement.errors import InvariantViolation


class FiscalStatus(str, Enum):
    """Aggregated SMAC status of a session."""
    ALL = "all"
    NONE = "none"
    PARTIAL = "partial"

    def as_flag(self) -> Union[bool, str]:
        """Wire form: True, False or "partial"."""
        if self is FiscalStatus.ALL:
            return True
        if self is FiscalStatus.NONE:
            return False
        return "partial"


@dataclass(frozen=True)
class SettlementStatus:
    """
    Settlement view of a session at one point of the ledger.

    remaining_cents is the raw difference and may be negative; use
    display_remaining_cents for rendering and is_overpaid to surface it.
    """
    session_id: int
    total_cents: int
    paid_cents: int
    remaining_cents: int
    fiscal_status: FiscalStatus
    fiscal_cents: int
    payment_count: int
    is_open: bool = True

    @property
    def display_remaining_cents(self) -> int:
        return max(0, self.remaining_cents)

    @property
    def is_overpaid(self) -> bool:
        return self.remaining_cents < 0

    @property
    def is_settled(self) -> bool:
        return self.remaining_cents == 0

    @property
    def can_close(self) -> bool:
        """Eligible for auto-close: open and remaining exactly zero."""
        return self.is_open and self.remaining_cents == 0

    @property
    def non_fiscal_cents(self) -> int:
        return self.paid_cents - self.fiscal_cents

    def ensure_consistent(self) -> "SettlementStatus":
        """Raise if the ledger paid more than the session owes."""
        if self.is_overpaid:
            raise InvariantViolation(
                f"Session {self.session_id} overpaid by {-self.remaining_cents} cents"
            )
        return self


def fallback_fiscal_flag(session: Session, orders: Iterable[Order]) -> bool:
    """
    Fiscal flag of a session settled without split payments.

    The session's own flag wins; otherwise the first live ticket's flag
    stands in for the whole bill.
    """
    if session.fiscal_flag:
        return True
    live = sorted((o for o in orders if not o.is_cancelled), key=lambda o: (o.number, o.id))
    return live[0].fiscal_flag if live else False


def aggregate_fiscal_status(
    payments: Iterable[SessionPayment],
    fallback: Optional[bool] = None,
) -> tuple[FiscalStatus, int]:
    """
    Tri-state fiscal status and flagged amount of a set of payments.

    Args:
        payments: Ledger entries of one session
        fallback: Flag used when there are no payments at all

    Returns:
        (FiscalStatus, fiscal_cents)
    """
    payments = tuple(payments)
    if not payments:
        return (FiscalStatus.ALL if fallback else FiscalStatus.NONE), 0

    paid = sum(p.amount_cents for p in payments)
    fiscal = sum(p.amount_cents for p in payments if p.fiscal_flag)

    if fiscal == 0:
        return FiscalStatus.NONE, 0
    if paid > 0 and fiscal == paid:
        return FiscalStatus.ALL, fiscal
    return FiscalStatus.PARTIAL, fiscal


def compute_settlement_status(
    session: Session,
    orders: Iterable[Order],
    payments: Iterable[SessionPayment],
) -> SettlementStatus:
    """
    Derive the settlement status of a session from its full ledger.

    Args:
        session: The dining tab
        orders: All its orders (used for the no-split fiscal fallback)
        payments: All its ledger entries

    Returns:
        SettlementStatus
    """
    orders = tuple(orders)
    payments = tuple(payments)

    total = session.effective_total_cents
    paid = sum(p.amount_cents for p in payments)
    fiscal_status, fiscal_cents = aggregate_fiscal_status(
        payments,
        fallback=fallback_fiscal_flag(session, orders),
    )

    return SettlementStatus(
        session_id=session.id,
        total_cents=total,
        paid_cents=paid,
        remaining_cents=total - paid,
        fiscal_status=fiscal_status,
        fiscal_cents=fiscal_cents,
        payment_count=len(payments),
        is_open=session.is_open,
    )

"""
Daily Fiscal Summary

Splits a day's takings into fiscal (SMAC-registered) and non-fiscal
amounts for tax reporting:

    - Standalone orders count in full by their own fiscal flag
    - Sessions settled with split payments contribute the sum of their
      flagged payments to the fiscal total and the rest of the session
      total to the non-fiscal total
    - Sessions settled without split payments count in full by the
      session flag, or the first order's flag

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Mapping

from splitbill.services.settlement.entities import Order, Session, SessionPayment
from splitbill.services.settlement.status import aggregate_fiscal_status, fallback_fiscal_flag
from splitbill.services.store.base import BaseSessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FiscalSummary:
    """Fiscal breakdown of one day."""
    day: date
    fiscal_cents: int = 0
    non_fiscal_cents: int = 0
    revenue_by_method: dict[str, int] = field(default_factory=dict)
    order_count: int = 0
    standalone_count: int = 0
    session_count: int = 0
    cancelled_count: int = 0

    @property
    def total_cents(self) -> int:
        return self.fiscal_cents + self.non_fiscal_cents


def summarize_fiscal_day(
    day: date,
    orders: Iterable[Order],
    sessions: Mapping[int, Session],
    payments: Mapping[int, Iterable[SessionPayment]],
) -> FiscalSummary:
    """
    Build the fiscal summary from already loaded data.

    Args:
        day: Day being summarized
        orders: Every order created that day
        sessions: Sessions referenced by those orders, by id
        payments: Ledger entries per session id
    """
    fiscal = 0
    non_fiscal = 0
    by_method: dict[str, int] = defaultdict(int)
    by_session: dict[int, list[Order]] = defaultdict(list)
    standalone = 0
    cancelled = 0
    live = 0

    for order in orders:
        if order.is_cancelled:
            cancelled += 1
            continue
        live += 1
        if order.is_standalone:
            standalone += 1
            if order.fiscal_flag:
                fiscal += order.total_cents
            else:
                non_fiscal += order.total_cents
            by_method[order.payment_method.value] += order.total_cents
        else:
            by_session[order.session_id].append(order)

    for session_id, session_orders in by_session.items():
        session = sessions.get(session_id)
        if session is None:
            logger.warning(f"Fiscal summary: session {session_id} missing, orders skipped")
            continue

        total = session.effective_total_cents
        ledger = tuple(payments.get(session_id, ()))

        if ledger:
            _, flagged = aggregate_fiscal_status(ledger)
            flagged = min(flagged, total)
            fiscal += flagged
            non_fiscal += total - flagged
            for payment in ledger:
                by_method[payment.method.value] += payment.amount_cents
        else:
            if fallback_fiscal_flag(session, session_orders):
                fiscal += total
            else:
                non_fiscal += total
            first = min(session_orders, key=lambda o: (o.number, o.id))
            method = session.close_method.value if session.close_method else first.payment_method.value
            by_method[method] += total

    return FiscalSummary(
        day=day,
        fiscal_cents=fiscal,
        non_fiscal_cents=non_fiscal,
        revenue_by_method=dict(by_method),
        order_count=live,
        standalone_count=standalone,
        session_count=len(by_session),
        cancelled_count=cancelled,
    )


async def build_daily_summary(store: BaseSessionStore, day: date) -> FiscalSummary:
    """Load a day's orders with their sessions and ledgers, then summarize."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    end = start + timedelta(days=1)

    orders = await store.list_orders_between(start, end)

    sessions: dict[int, Session] = {}
    payments: dict[int, list[SessionPayment]] = {}
    for session_id in {o.session_id for o in orders if o.session_id is not None}:
        session = await store.get_session(session_id)
        if session is None:
            continue
        sessions[session_id] = session
        payments[session_id] = await store.list_session_payments(session_id)

    summary = summarize_fiscal_day(day, orders, sessions, payments)
    logger.info(
        f"Fiscal summary {day}: fiscal {summary.fiscal_cents}, "
        f"non-fiscal {summary.non_fiscal_cents} cents over {summary.order_count} orders"
    )
    return summary

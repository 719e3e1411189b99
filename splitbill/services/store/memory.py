"""
In-Memory Session Store

Keeps sessions, orders and the payment ledger in process memory.
Used in development mode (ENV_MODE=development) to:
    - Exercise the complete settlement flow without a database
    - Run the concurrency simulation against a single API process
    - Back the unit tests

Behavior:
    - Appends are serialized by an asyncio lock, so the pre-commit amount
      and item-quantity checks and the write happen as one step
    - Optional simulated latency widens race windows for testing
    - Optional failure injection makes the next N appends fail before
      anything is written

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import itertools
import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from splitbill.services.settlement.entities import (
    CloseMethod,
    Order,
    PaymentDraft,
    Session,
    SessionPayment,
    utcnow,
)
from splitbill.services.settlement.errors import ConcurrencyConflict, SessionNotFound
from splitbill.services.settlement.remaining import (
    ordered_quantities,
    overdrawn_items,
    settled_quantities,
)
from splitbill.services.store.base import BaseSessionStore

logger = logging.getLogger(__name__)


class InMemorySessionStore(BaseSessionStore):
    """
    Process-local implementation of the session store.

    Attributes:
        latency: Seconds to sleep inside every append (inside the lock)
        fail_next_appends: Number of upcoming appends that raise ConnectionError

    Example:
        >>> store = InMemorySessionStore()
        >>> store.add_session(Session(id=1, total_cents=10000))
        >>> payments = await store.list_session_payments(1)
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.fail_next_appends = 0
        self._sessions: dict[int, Session] = {}
        self._orders: dict[int, Order] = {}
        self._payments: list[SessionPayment] = []
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

        logger.info(f"InMemorySessionStore initialized (latency={latency}s)")

    @property
    def provider_name(self) -> str:
        return "memory"

    # =========================================================================
    # SEEDING
    # =========================================================================

    def add_session(self, session: Session) -> Session:
        self._sessions[session.id] = session
        return session

    def add_order(self, order: Order) -> Order:
        if order.session_id is not None and order.session_id not in self._sessions:
            raise SessionNotFound(order.session_id)
        self._orders[order.id] = order
        return order

    def add_orders(self, orders: Iterable[Order]) -> None:
        for order in orders:
            self.add_order(order)

    def next_id(self) -> int:
        return next(self._ids)

    # =========================================================================
    # READS
    # =========================================================================

    async def get_session(self, session_id: int) -> Optional[Session]:
        return self._sessions.get(session_id)

    async def list_session_orders(self, session_id: int) -> list[Order]:
        orders = [o for o in self._orders.values() if o.session_id == session_id]
        return sorted(orders, key=lambda o: (o.number, o.id))

    async def list_session_payments(self, session_id: int) -> list[SessionPayment]:
        payments = [p for p in self._payments if p.session_id == session_id]
        return sorted(payments, key=lambda p: (p.paid_at, p.id))

    async def find_payment_by_key(
        self,
        session_id: int,
        idempotency_key: str,
    ) -> Optional[SessionPayment]:
        for payment in self._payments:
            if payment.session_id == session_id and payment.idempotency_key == idempotency_key:
                return payment
        return None

    async def list_orders_between(self, start: datetime, end: datetime) -> list[Order]:
        return sorted(
            (o for o in self._orders.values() if start <= o.created_at < end),
            key=lambda o: (o.created_at, o.id),
        )

    # =========================================================================
    # WRITES
    # =========================================================================

    async def append_payment(
        self,
        draft: PaymentDraft,
        limit_cents: Optional[int] = None,
    ) -> SessionPayment:
        async with self._lock:
            if draft.idempotency_key:
                existing = await self.find_payment_by_key(draft.session_id, draft.idempotency_key)
                if existing is not None:
                    logger.info(
                        f"Payment key {draft.idempotency_key} already committed as #{existing.id}"
                    )
                    return existing

            session = self._sessions.get(draft.session_id)
            if session is None:
                raise SessionNotFound(draft.session_id)

            if self.latency:
                await asyncio.sleep(self.latency)

            if self.fail_next_appends > 0:
                self.fail_next_appends -= 1
                logger.warning(f"Simulated store failure for session {draft.session_id}")
                raise ConnectionError("Simulated store failure")

            committed = [p for p in self._payments if p.session_id == draft.session_id]
            paid = sum(p.amount_cents for p in committed)
            if not session.is_open:
                raise ConcurrencyConflict(0, "The bill was closed in the meantime")
            if limit_cents is not None and paid + draft.amount_cents > limit_cents:
                raise ConcurrencyConflict(limit_cents - paid)

            if draft.items:
                orders = [o for o in self._orders.values() if o.session_id == draft.session_id]
                overdrawn = overdrawn_items(
                    ordered_quantities(session, orders),
                    settled_quantities(committed),
                    draft.items,
                )
                if overdrawn:
                    logger.info(f"Session {draft.session_id}: items {overdrawn} already settled")
                    raise ConcurrencyConflict(
                        (limit_cents if limit_cents is not None else session.effective_total_cents) - paid,
                        "Some of the selected items were paid in the meantime",
                    )

            payment = SessionPayment.from_draft(draft, payment_id=self.next_id())
            self._payments.append(payment)

        logger.info(
            f"Payment #{payment.id} appended to session {payment.session_id} "
            f"({payment.amount_cents} cents, {payment.method.value})"
        )
        return payment

    async def set_session_fiscal_flag(self, session_id: int, fiscal_flag: bool) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        self._sessions[session_id] = replace(session, fiscal_flag=fiscal_flag)

    async def close_session(
        self,
        session_id: int,
        method: CloseMethod,
        fiscal_flag: bool,
    ) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        closed = session.closed(method, fiscal_flag, at=utcnow())
        self._sessions[session_id] = closed
        logger.info(f"Session {session_id} closed ({method.value})")
        return closed

    async def health_check(self) -> bool:
        """In-memory store is always healthy."""
        return True

"""
SQL Session Store

Production implementation on SQLAlchemy asyncio (PostgreSQL via psycopg).

Append protocol (one transaction):
    1. Lock the session row (SELECT ... FOR UPDATE)
    2. Return the existing payment if the idempotency key already committed
    3. Re-check that the session is open, that paid + amount stays
       within the limit and that no selected line would be settled
       beyond its ordered quantity (SUM per order line)
    4. Insert the payment row and its item rows, then commit

A unique constraint on (session_id, idempotency_key) backs step 2 on
backends without row locks.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import noload

from splitbill.database import get_session_maker
from splitbill.models import (
    Order as OrderRow,
    OrderItem as OrderItemRow,
    SessionPaymentItemRow,
    SessionPaymentRow,
    TableSession,
)
from splitbill.services.settlement.entities import (
    COVER_ITEM_ID,
    CloseMethod,
    ItemKey,
    Order,
    OrderItem,
    OrderStatus,
    PaymentDraft,
    Session,
    SessionPayment,
    SessionPaymentItem,
    SessionStatus,
    utcnow,
)
from splitbill.services.settlement.errors import ConcurrencyConflict, SessionNotFound
from splitbill.services.settlement.remaining import overdrawn_items
from splitbill.services.store.base import BaseSessionStore

logger = logging.getLogger(__name__)


# =============================================================================
# ROW -> ENTITY
# =============================================================================

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def session_from_row(row: TableSession) -> Session:
    return Session(
        id=row.id,
        total_cents=row.total_cents,
        covers=row.covers,
        cover_unit_cents=row.cover_unit_cents,
        cover_included=row.cover_included,
        status=row.status,
        fiscal_flag=row.fiscal_flag,
        table_name=row.table_name,
        opened_at=_aware(row.opened_at) or utcnow(),
        closed_at=_aware(row.closed_at),
        close_method=row.close_method,
    )


def order_from_row(row: OrderRow) -> Order:
    return Order(
        id=row.id,
        total_cents=row.total_cents,
        session_id=row.session_id,
        number=row.order_number,
        fiscal_flag=row.fiscal_flag,
        payment_method=row.payment_method,
        status=row.status,
        items=tuple(
            OrderItem(
                id=item.id,
                order_id=row.id,
                name=item.name,
                unit_price_cents=item.unit_price_cents,
                quantity=item.quantity,
                notes=item.notes or "",
            )
            for item in row.items
        ),
        created_at=_aware(row.created_at) or utcnow(),
    )


def payment_from_row(row: SessionPaymentRow) -> SessionPayment:
    return SessionPayment(
        id=row.id,
        session_id=row.session_id,
        amount_cents=row.amount_cents,
        method=row.payment_method,
        paid_at=_aware(row.paid_at),
        notes=row.notes,
        fiscal_flag=row.fiscal_flag,
        items=tuple(
            SessionPaymentItem(
                order_item_id=COVER_ITEM_ID if item.is_cover else item.order_item_id,
                quantity=item.quantity,
                name=item.name,
                unit_price_cents=item.unit_price_cents,
            )
            for item in row.items
        ),
        idempotency_key=row.idempotency_key,
    )


class SqlSessionStore(BaseSessionStore):
    """
    Session store on a relational database.

    Example:
        >>> store = SqlSessionStore()
        >>> payment = await store.append_payment(draft, limit_cents=10000)
    """

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker or get_session_maker()
        logger.info("SqlSessionStore initialized")

    @property
    def provider_name(self) -> str:
        return "sql"

    # =========================================================================
    # READS
    # =========================================================================

    async def get_session(self, session_id: int) -> Optional[Session]:
        async with self._session_maker() as db:
            row = await db.get(TableSession, session_id, options=[noload(TableSession.orders)])
            return session_from_row(row) if row else None

    async def list_session_orders(self, session_id: int) -> list[Order]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(OrderRow)
                .where(OrderRow.session_id == session_id)
                .order_by(OrderRow.order_number, OrderRow.id)
            )
            return [order_from_row(row) for row in result.scalars().all()]

    async def list_session_payments(self, session_id: int) -> list[SessionPayment]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(SessionPaymentRow)
                .where(SessionPaymentRow.session_id == session_id)
                .order_by(SessionPaymentRow.paid_at, SessionPaymentRow.id)
            )
            return [payment_from_row(row) for row in result.scalars().all()]

    async def find_payment_by_key(
        self,
        session_id: int,
        idempotency_key: str,
    ) -> Optional[SessionPayment]:
        async with self._session_maker() as db:
            row = await self._find_by_key(db, session_id, idempotency_key)
            return payment_from_row(row) if row else None

    async def list_orders_between(self, start: datetime, end: datetime) -> list[Order]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(OrderRow)
                .where(OrderRow.created_at >= start, OrderRow.created_at < end)
                .order_by(OrderRow.created_at, OrderRow.id)
            )
            return [order_from_row(row) for row in result.scalars().all()]

    @staticmethod
    async def _find_by_key(
        db: AsyncSession,
        session_id: int,
        idempotency_key: str,
    ) -> Optional[SessionPaymentRow]:
        result = await db.execute(
            select(SessionPaymentRow).where(
                SessionPaymentRow.session_id == session_id,
                SessionPaymentRow.idempotency_key == idempotency_key,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _overdrawn_items(
        db: AsyncSession,
        session_row: TableSession,
        draft: PaymentDraft,
    ) -> list[ItemKey]:
        """Check the draft's item rows against what is committed, under the session lock."""
        ordered_rows = await db.execute(
            select(OrderItemRow.id, OrderItemRow.quantity)
            .join(OrderRow, OrderItemRow.order_id == OrderRow.id)
            .where(
                OrderRow.session_id == session_row.id,
                OrderRow.status != OrderStatus.CANCELLED,
            )
        )
        ordered: dict[ItemKey, int] = {item_id: quantity for item_id, quantity in ordered_rows.all()}
        ordered[COVER_ITEM_ID] = session_row.covers

        settled_rows = await db.execute(
            select(
                SessionPaymentItemRow.order_item_id,
                SessionPaymentItemRow.is_cover,
                func.sum(SessionPaymentItemRow.quantity),
            )
            .join(SessionPaymentRow, SessionPaymentItemRow.payment_id == SessionPaymentRow.id)
            .where(SessionPaymentRow.session_id == session_row.id)
            .group_by(SessionPaymentItemRow.order_item_id, SessionPaymentItemRow.is_cover)
        )
        settled: dict[ItemKey, int] = defaultdict(int)
        for order_item_id, is_cover, quantity in settled_rows.all():
            settled[COVER_ITEM_ID if is_cover else order_item_id] += quantity

        return overdrawn_items(ordered, settled, draft.items)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def append_payment(
        self,
        draft: PaymentDraft,
        limit_cents: Optional[int] = None,
    ) -> SessionPayment:
        try:
            async with self._session_maker() as db:
                async with db.begin():
                    result = await db.execute(
                        select(TableSession)
                        .where(TableSession.id == draft.session_id)
                        .options(noload(TableSession.orders))
                        .with_for_update()
                    )
                    session_row = result.scalar_one_or_none()
                    if session_row is None:
                        raise SessionNotFound(draft.session_id)

                    if draft.idempotency_key:
                        existing = await self._find_by_key(db, draft.session_id, draft.idempotency_key)
                        if existing is not None:
                            logger.info(
                                f"Payment key {draft.idempotency_key} already committed as #{existing.id}"
                            )
                            return payment_from_row(existing)

                    if session_row.status != SessionStatus.OPEN:
                        raise ConcurrencyConflict(0, "The bill was closed in the meantime")

                    paid = (await db.execute(
                        select(func.coalesce(func.sum(SessionPaymentRow.amount_cents), 0))
                        .where(SessionPaymentRow.session_id == draft.session_id)
                    )).scalar_one()
                    if limit_cents is not None and paid + draft.amount_cents > limit_cents:
                        raise ConcurrencyConflict(limit_cents - paid)

                    if draft.items:
                        overdrawn = await self._overdrawn_items(db, session_row, draft)
                        if overdrawn:
                            logger.info(f"Session {draft.session_id}: items {overdrawn} already settled")
                            limit = limit_cents
                            if limit is None:
                                limit = session_from_row(session_row).effective_total_cents
                            raise ConcurrencyConflict(
                                limit - paid,
                                "Some of the selected items were paid in the meantime",
                            )

                    row = SessionPaymentRow(
                        session_id=draft.session_id,
                        amount_cents=draft.amount_cents,
                        payment_method=draft.method,
                        notes=draft.notes,
                        fiscal_flag=draft.fiscal_flag,
                        idempotency_key=draft.idempotency_key,
                        paid_at=utcnow(),
                        items=[
                            SessionPaymentItemRow(
                                order_item_id=None if item.is_cover else item.order_item_id,
                                is_cover=item.is_cover,
                                name=item.name,
                                unit_price_cents=item.unit_price_cents,
                                quantity=item.quantity,
                            )
                            for item in draft.items
                        ],
                    )
                    db.add(row)
                    await db.flush()
                    payment = payment_from_row(row)
        except IntegrityError:
            if draft.idempotency_key:
                existing = await self.find_payment_by_key(draft.session_id, draft.idempotency_key)
                if existing is not None:
                    logger.info(f"Concurrent retry of key {draft.idempotency_key} resolved to #{existing.id}")
                    return existing
            raise

        logger.info(
            f"Payment #{payment.id} appended to session {payment.session_id} "
            f"({payment.amount_cents} cents, {payment.method.value})"
        )
        return payment

    async def set_session_fiscal_flag(self, session_id: int, fiscal_flag: bool) -> None:
        async with self._session_maker() as db:
            async with db.begin():
                result = await db.execute(
                    update(TableSession)
                    .where(TableSession.id == session_id)
                    .values(fiscal_flag=fiscal_flag)
                )
                if result.rowcount == 0:
                    raise SessionNotFound(session_id)

    async def close_session(
        self,
        session_id: int,
        method: CloseMethod,
        fiscal_flag: bool,
    ) -> Session:
        async with self._session_maker() as db:
            async with db.begin():
                result = await db.execute(
                    select(TableSession)
                    .where(TableSession.id == session_id)
                    .options(noload(TableSession.orders))
                    .with_for_update()
                )
                row = result.scalar_one_or_none()
                if row is None:
                    raise SessionNotFound(session_id)
                row.status = SessionStatus.CLOSED
                row.close_method = method
                row.fiscal_flag = fiscal_flag
                row.closed_at = utcnow()
            closed = session_from_row(row)

        logger.info(f"Session {session_id} closed ({method.value})")
        return closed

    async def health_check(self) -> bool:
        try:
            async with self._session_maker() as db:
                await db.execute(select(1))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    # =========================================================================
    # SEEDING
    # =========================================================================

    async def create_session(self, session: Session, orders: tuple[Order, ...] = ()) -> Session:
        """Insert a session with its orders. Used by the demo endpoint and tests."""
        async with self._session_maker() as db:
            async with db.begin():
                row = TableSession(
                    table_name=session.table_name,
                    total_cents=session.total_cents,
                    covers=session.covers,
                    cover_unit_cents=session.cover_unit_cents,
                    cover_included=session.cover_included,
                    status=session.status,
                    fiscal_flag=session.fiscal_flag,
                    opened_at=session.opened_at,
                )
                db.add(row)
                await db.flush()
                for order in orders:
                    db.add(OrderRow(
                        session_id=row.id,
                        order_number=order.number,
                        total_cents=order.total_cents,
                        payment_method=order.payment_method,
                        fiscal_flag=order.fiscal_flag,
                        status=order.status,
                        created_at=order.created_at,
                        items=[
                            OrderItemRow(
                                name=item.name,
                                unit_price_cents=item.unit_price_cents,
                                quantity=item.quantity,
                                notes=item.notes or None,
                            )
                            for item in order.items
                        ],
                    ))
            created = session_from_row(row)
        return created

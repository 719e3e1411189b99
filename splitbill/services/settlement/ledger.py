"""
Payment Ledger

Thin engine-side wrapper around the session store:
    - Reads a consistent snapshot (session, orders, payments) to feed the
      pure aggregators
    - Performs the engine's writes (payment append, session close, the
      session fiscal flag) and translates transport errors into StoreFailure
    - Publishes a change signal after every committed write

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from typing import Optional

from splitbill.services.changebus.base import BaseChangeBus, ChangeEvent
from splitbill.services.settlement.entities import (
    CloseMethod,
    Order,
    PaymentDraft,
    Session,
    SessionPayment,
)
from splitbill.services.settlement.errors import (
    ErrorCode,
    SessionNotFound,
    SettlementError,
    StoreFailure,
    ValidationError,
)
from splitbill.services.settlement.remaining import RemainingItems, aggregate_remaining_items
from splitbill.services.settlement.status import SettlementStatus, compute_settlement_status
from splitbill.services.store.base import BaseSessionStore

logger = logging.getLogger(__name__)

PAYMENTS_ENTITY = "session_payments"
SESSIONS_ENTITY = "table_sessions"


@dataclass(frozen=True)
class LedgerSnapshot:
    """Everything the aggregators need, read at one point in time."""
    session: Session
    orders: tuple[Order, ...]
    payments: tuple[SessionPayment, ...]

    def status(self) -> SettlementStatus:
        return compute_settlement_status(self.session, self.orders, self.payments)

    def remaining_items(self) -> RemainingItems:
        return aggregate_remaining_items(self.session, self.orders, self.payments)

    @property
    def payment_ids(self) -> frozenset[int]:
        return frozenset(p.id for p in self.payments)


class PaymentLedger:
    """
    Append-only ledger of split payments.

    Example:
        >>> ledger = PaymentLedger(store, change_bus)
        >>> snapshot = await ledger.snapshot(42)
        >>> snapshot.status().remaining_cents
    """

    def __init__(self, store: BaseSessionStore, change_bus: Optional[BaseChangeBus] = None):
        self.store = store
        self.change_bus = change_bus

    async def snapshot(self, session_id: int) -> LedgerSnapshot:
        """
        Read session, orders and payments.

        Raises:
            SessionNotFound: Unknown session
            StoreFailure: The store could not be read
        """
        try:
            session = await self.store.get_session(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            orders = await self.store.list_session_orders(session_id)
            payments = await self.store.list_session_payments(session_id)
        except SettlementError:
            raise
        except Exception as e:
            logger.error(f"Ledger read failed for session {session_id}: {e}")
            raise StoreFailure("Could not read the bill") from e

        return LedgerSnapshot(session=session, orders=tuple(orders), payments=tuple(payments))

    async def find_by_key(self, session_id: int, idempotency_key: str) -> Optional[SessionPayment]:
        try:
            return await self.store.find_payment_by_key(session_id, idempotency_key)
        except Exception as e:
            logger.error(f"Idempotency lookup failed for session {session_id}: {e}")
            raise StoreFailure() from e

    async def append(self, draft: PaymentDraft, limit_cents: Optional[int] = None) -> SessionPayment:
        """
        Append a payment atomically.

        Raises:
            ConcurrencyConflict: The store's in-transaction limit check failed
            StoreFailure: Any other failure of the append. Nothing was written.
        """
        try:
            payment = await self.store.append_payment(draft, limit_cents=limit_cents)
        except SettlementError:
            raise
        except Exception as e:
            logger.error(f"Payment append failed for session {draft.session_id}: {e}")
            raise StoreFailure() from e

        await self._signal(PAYMENTS_ENTITY, payment.session_id)
        return payment

    async def close_session(self, session_id: int, method: CloseMethod, fiscal_flag: bool) -> Session:
        try:
            session = await self.store.close_session(session_id, method, fiscal_flag)
        except SettlementError:
            raise
        except Exception as e:
            logger.error(f"Closing session {session_id} failed: {e}")
            raise StoreFailure("Could not close the bill") from e

        await self._signal(SESSIONS_ENTITY, session_id)
        return session

    async def set_fiscal_flag(self, session_id: int, fiscal_flag: bool) -> LedgerSnapshot:
        """
        Set the session's own SMAC flag, used when the bill has no split payments.

        Raises:
            ValidationError: SESSION_CLOSED once the bill is closed
            SessionNotFound: Unknown session
            StoreFailure: The store could not be written
        """
        snapshot = await self.snapshot(session_id)
        if not snapshot.session.is_open:
            raise ValidationError(ErrorCode.SESSION_CLOSED, "This bill is already closed")

        try:
            await self.store.set_session_fiscal_flag(session_id, fiscal_flag)
        except SettlementError:
            raise
        except Exception as e:
            logger.error(f"Updating the fiscal flag of session {session_id} failed: {e}")
            raise StoreFailure("Could not update the bill") from e

        logger.info(f"Session {session_id} fiscal flag set to {fiscal_flag}")
        await self._signal(SESSIONS_ENTITY, session_id)
        return await self.snapshot(session_id)

    async def _signal(self, entity: str, session_id: int) -> None:
        if self.change_bus is None:
            return
        try:
            await self.change_bus.publish(ChangeEvent(entity=entity, session_id=session_id))
        except Exception as e:
            logger.warning(f"Change signal for session {session_id} not delivered: {e}")

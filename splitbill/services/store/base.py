"""
Session Store Abstract Base Class

Defines the interface contract for every order/session store.
Both InMemorySessionStore and SqlSessionStore implement these methods,
so the settlement engine behaves identically whichever is active.

Design Pattern: Repository
    - Stores return settlement entities, never ORM rows
    - The payment append is the only write the engine performs, and it
      is all-or-nothing (payment row + item rows)

Author: Khalil Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from splitbill.services.settlement.entities import (
    CloseMethod,
    Order,
    PaymentDraft,
    Session,
    SessionPayment,
)


class BaseSessionStore(ABC):
    """
    Abstract base class for order/session stores.

    Example:
        >>> store = get_session_store()
        >>> session = await store.get_session(42)
        >>> payments = await store.list_session_payments(42)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the store backend.

        Returns:
            str: Backend name (e.g., "memory", "sql")
        """
        pass

    @abstractmethod
    async def get_session(self, session_id: int) -> Optional[Session]:
        """
        Read a session.

        Args:
            session_id: Session identifier

        Returns:
            Session, or None if it does not exist
        """
        pass

    @abstractmethod
    async def list_session_orders(self, session_id: int) -> list[Order]:
        """
        Read every order of a session with its items, by order number.
        """
        pass

    @abstractmethod
    async def list_session_payments(self, session_id: int) -> list[SessionPayment]:
        """
        Read every ledger entry of a session with its item rows, oldest first.
        """
        pass

    @abstractmethod
    async def find_payment_by_key(
        self,
        session_id: int,
        idempotency_key: str,
    ) -> Optional[SessionPayment]:
        """
        Find an already committed payment by its idempotency key.
        """
        pass

    @abstractmethod
    async def append_payment(
        self,
        draft: PaymentDraft,
        limit_cents: Optional[int] = None,
    ) -> SessionPayment:
        """
        Append a payment and its item rows in one atomic operation.

        Args:
            draft: Validated payment
            limit_cents: When given, the store re-checks inside its write
                transaction that the session's paid amount plus this
                payment does not exceed it

        Item rows are always re-checked in the same transaction: the
        settled quantity of a line plus the draft's quantity may not
        exceed the ordered quantity (covers count against session.covers).

        Returns:
            SessionPayment: The committed entry. If a payment with the same
            idempotency key already exists it is returned unchanged.

        Raises:
            ConcurrencyConflict: The limit or quantity check failed inside
                the transaction
            SessionNotFound: Unknown session
        """
        pass

    @abstractmethod
    async def set_session_fiscal_flag(self, session_id: int, fiscal_flag: bool) -> None:
        """
        Update a session's own fiscal flag (no-split fallback).
        """
        pass

    @abstractmethod
    async def close_session(
        self,
        session_id: int,
        method: CloseMethod,
        fiscal_flag: bool,
    ) -> Session:
        """
        Mark a session closed.

        Returns:
            Session: The closed session
        """
        pass

    @abstractmethod
    async def list_orders_between(self, start: datetime, end: datetime) -> list[Order]:
        """
        Read every order created in [start, end), standalone or not.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify the backend is reachable.

        Returns:
            bool: True if operational
        """
        pass

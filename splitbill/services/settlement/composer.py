"""
Manual Payment Composer

The pending-payment form of one terminal and its submit(), the only
operation of the engine that writes.

Submit sequence:
    1. Validate the form (amount > 0)
    2. If this attempt's idempotency key already committed, finish with
       that payment instead of appending again
    3. Re-read the ledger and re-derive remaining amount and remaining
       item quantities; reject an amount above the fresh remaining
    4. Append payment + item rows in one store operation, which repeats
       the amount and item-quantity checks inside its own transaction
    5. Clear the form and the selection, notify, and auto-close the
       session when remaining is exactly zero

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, replace
from typing import Optional, Union

from splitbill.core.config import Settings, get_settings
from splitbill.services.notifications.base import BaseNotificationSink
from splitbill.services.settlement.entities import (
    CloseMethod,
    PaymentDraft,
    PaymentMethod,
    SessionPayment,
    SessionPaymentItem,
)
from splitbill.services.settlement.errors import (
    ConcurrencyConflict,
    ErrorCode,
    InvariantViolation,
    SettlementError,
    StoreFailure,
    ValidationError,
)
from splitbill.services.settlement.ledger import LedgerSnapshot, PaymentLedger
from splitbill.services.settlement.money import MoneyInput, format_cents, to_cents
from splitbill.services.settlement.planner import (
    ItemSelectionPlanner,
    SelectionCandidate,
    equal_share,
    equal_share_note,
)
from splitbill.services.settlement.status import FiscalStatus, SettlementStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of a successful submit."""
    payment: SessionPayment
    status: SettlementStatus
    closed: bool = False
    change_cents: Optional[int] = None


class ManualPaymentComposer:
    """
    Pending payment form bound to one session.

    Attributes:
        amount_cents: Amount to settle (required, > 0)
        method: cash, card or online
        note: Free text stored on the payment
        fiscal_flag: SMAC flag, ignored when fiscal tracking is disabled
        tendered_cents: Cash handed over, used for change()
        status: Settlement status seen at the last refresh

    Example:
        >>> composer = ManualPaymentComposer(42, ledger, notifier)
        >>> await composer.refresh()
        >>> composer.set_amount("40.00")
        >>> composer.method = PaymentMethod.CARD
        >>> result = await composer.submit()
    """

    def __init__(
        self,
        session_id: int,
        ledger: PaymentLedger,
        notifier: BaseNotificationSink,
        settings: Optional[Settings] = None,
    ):
        self.session_id = session_id
        self.ledger = ledger
        self.notifier = notifier
        self.settings = settings or get_settings()

        self.amount_cents: Optional[int] = None
        self.method: PaymentMethod = PaymentMethod.CASH
        self.note: str = ""
        self.fiscal_flag: bool = False
        self.tendered_cents: Optional[int] = None
        self.status: Optional[SettlementStatus] = None

        self._items: tuple[SessionPaymentItem, ...] = ()
        self._planner: Optional[ItemSelectionPlanner] = None
        self._attempt_key: Optional[str] = None
        self._seen_payment_ids: Optional[frozenset[int]] = None

    # =========================================================================
    # FORM
    # =========================================================================

    @property
    def items(self) -> tuple[SessionPaymentItem, ...]:
        return self._items

    @property
    def attempt_key(self) -> Optional[str]:
        return self._attempt_key

    def use_attempt_key(self, key: Optional[str]) -> None:
        """Adopt a caller-supplied idempotency key (client-side retries)."""
        if key:
            self._attempt_key = key

    def set_amount(self, amount: Optional[MoneyInput]) -> None:
        self.amount_cents = None if amount is None else to_cents(amount)

    def set_tendered(self, tendered: Optional[MoneyInput]) -> None:
        self.tendered_cents = None if tendered is None else to_cents(tendered)

    def change(self) -> Optional[int]:
        """
        Change due for a cash payment, in cents.

        None unless the method is cash and both amounts are known.
        May be negative when not enough cash was tendered.
        """
        if self.method != PaymentMethod.CASH:
            return None
        if self.tendered_cents is None or self.amount_cents is None:
            return None
        return self.tendered_cents - self.amount_cents

    def load_selection(self, source: Union[SelectionCandidate, ItemSelectionPlanner]) -> SelectionCandidate:
        """
        Pre-fill the form from an item selection.

        Given a planner, the planner is applied here and cleared after a
        successful submit.

        Raises:
            ValidationError: NOTHING_SELECTED for an empty planner
        """
        if isinstance(source, ItemSelectionPlanner):
            candidate = source.apply()
            self._planner = source
        else:
            candidate = source
        self.amount_cents = candidate.amount_cents
        self._items = candidate.items
        self.note = candidate.note
        return candidate

    def load_equal_share(
        self,
        total_people: int,
        paying_people: int = 1,
        remaining_cents: Optional[int] = None,
    ) -> int:
        """Pre-fill the amount with an equal share of the remaining amount."""
        if remaining_cents is None:
            remaining_cents = self.status.display_remaining_cents if self.status else 0
        amount = equal_share(remaining_cents, total_people, paying_people)
        self.amount_cents = amount
        self._items = ()
        self.note = equal_share_note(total_people, paying_people)
        return amount

    def reset(self) -> None:
        """Abandon the pending payment. No ledger effect."""
        self.amount_cents = None
        self.method = PaymentMethod.CASH
        self.note = ""
        self.fiscal_flag = False
        self.tendered_cents = None
        self._items = ()
        self._attempt_key = None
        if self._planner is not None:
            self._planner.discard()
            self._planner = None

    # =========================================================================
    # LEDGER VIEW
    # =========================================================================

    def observe(self, snapshot: LedgerSnapshot) -> SettlementStatus:
        """Record the ledger state the operator is looking at."""
        self.status = snapshot.status()
        self._seen_payment_ids = snapshot.payment_ids
        return self.status

    async def refresh(self) -> LedgerSnapshot:
        snapshot = await self.ledger.snapshot(self.session_id)
        self.observe(snapshot)
        return snapshot

    # =========================================================================
    # SUBMIT
    # =========================================================================

    async def submit(self) -> SubmitResult:
        """
        Validate and append the pending payment.

        Returns:
            SubmitResult

        Raises:
            ValidationError: Invalid form, nothing changed
            ConcurrencyConflict: Another terminal settled part of the bill first
            StoreFailure: The append failed; submit() again retries the same attempt
            InvariantViolation: The ledger is already inconsistent
        """
        try:
            return await self._submit()
        except ValidationError as e:
            logger.info(f"Payment rejected for session {self.session_id}: {e}")
            self.notifier.error(e.message, self.session_id)
            raise
        except ConcurrencyConflict as e:
            logger.info(f"Payment conflict for session {self.session_id}: {e}")
            self.notifier.warning(
                f"{e.message}. Remaining: {format_cents(max(0, e.remaining_cents))}",
                self.session_id,
            )
            raise
        except StoreFailure as e:
            logger.error(f"Payment for session {self.session_id} not recorded: {e}")
            self.notifier.error(f"{e.message}. Please try again.", self.session_id)
            raise
        except InvariantViolation as e:
            logger.error(f"Ledger inconsistency on session {self.session_id}: {e}")
            self.notifier.error("The bill is inconsistent, please contact a manager", self.session_id)
            raise

    async def _submit(self) -> SubmitResult:
        amount = self.amount_cents
        if amount is None or amount <= 0:
            raise ValidationError(ErrorCode.INVALID_AMOUNT, "Amount must be greater than zero")

        if self._attempt_key is None:
            self._attempt_key = uuid.uuid4().hex

        committed = await self.ledger.find_by_key(self.session_id, self._attempt_key)
        if committed is not None:
            if not self._matches_form(committed, amount):
                logger.warning(
                    f"Attempt {self._attempt_key} was committed as payment #{committed.id} "
                    f"({committed.amount_cents} cents) but the form now says {amount} cents"
                )
                self._attempt_key = None
                await self.refresh()
                raise ValidationError(
                    ErrorCode.ATTEMPT_ALREADY_RECORDED,
                    f"The previous attempt was already recorded as a payment of "
                    f"{format_cents(committed.amount_cents)}",
                )
            logger.info(f"Attempt {self._attempt_key} already committed as payment #{committed.id}")
            return await self._finish(committed)

        snapshot = await self.ledger.snapshot(self.session_id)
        if not snapshot.session.is_open:
            raise ValidationError(ErrorCode.SESSION_CLOSED, "This bill is already closed")

        status = snapshot.status().ensure_consistent()
        raced = self._has_unseen_payments(snapshot)

        if amount > status.remaining_cents:
            if raced:
                self.observe(snapshot)
                raise ConcurrencyConflict(status.remaining_cents)
            raise ValidationError(
                ErrorCode.AMOUNT_EXCEEDS_REMAINING,
                f"Amount {format_cents(amount)} exceeds the remaining {format_cents(status.remaining_cents)}",
            )

        remaining = snapshot.remaining_items()
        for item in self._items:
            available = remaining.remaining_quantity(item.order_item_id)
            if item.quantity > available:
                if raced:
                    self.observe(snapshot)
                    raise ConcurrencyConflict(status.remaining_cents)
                raise ValidationError(
                    ErrorCode.QUANTITY_EXCEEDS_REMAINING,
                    f"Only {available} of {item.name} left to pay",
                )

        draft = PaymentDraft(
            session_id=self.session_id,
            amount_cents=amount,
            method=self.method,
            notes=self.note.strip() or None,
            fiscal_flag=self.fiscal_flag and self.settings.smac_enabled,
            items=self._items,
            idempotency_key=self._attempt_key,
        )
        try:
            payment = await self.ledger.append(draft, limit_cents=snapshot.session.effective_total_cents)
        except ConcurrencyConflict:
            await self.refresh()
            raise
        return await self._finish(payment)

    def _has_unseen_payments(self, snapshot: LedgerSnapshot) -> bool:
        if self._seen_payment_ids is None:
            return False
        return bool(snapshot.payment_ids - self._seen_payment_ids)

    def _matches_form(self, payment: SessionPayment, amount: int) -> bool:
        """Whether a committed payment is the one currently in the form."""
        if payment.amount_cents != amount:
            return False
        return Counter((i.order_item_id, i.quantity) for i in payment.items) == Counter(
            (i.order_item_id, i.quantity) for i in self._items
        )

    async def _finish(self, payment: SessionPayment) -> SubmitResult:
        change = self.change() if payment.method == PaymentMethod.CASH else None

        snapshot = await self.ledger.snapshot(self.session_id)
        status = self.observe(snapshot)
        self.reset()

        self.notifier.success(f"Payment of {format_cents(payment.amount_cents)} added", self.session_id)

        closed = False
        if status.can_close and self.settings.auto_close_on_settle:
            try:
                await self.ledger.close_session(
                    self.session_id,
                    CloseMethod.SPLIT,
                    fiscal_flag=status.fiscal_status is FiscalStatus.ALL,
                )
            except SettlementError as e:
                logger.error(f"Auto-close of session {self.session_id} failed: {e}")
                self.notifier.warning("Payment recorded, but the table could not be closed", self.session_id)
            else:
                closed = True
                status = replace(status, is_open=False)
                self.status = status
                logger.info(f"Session {self.session_id} fully settled and closed")
                self.notifier.info("Bill fully settled, table closed", self.session_id)

        return SubmitResult(payment=payment, status=status, closed=closed, change_cents=change)

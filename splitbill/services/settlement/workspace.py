"""
Settlement Workspace

Per-session controller used by one terminal while a bill is being split.
It wires the ledger, the item-selection planner, the payment composer,
the notification sink and the change bus together, and exposes the
engine's operations to the UI layer:

    - remaining_items()      aggregate remaining items
    - increment/decrement/toggle_all/set_covers   adjust selection
    - apply_selection()      pre-fill the composer from the selection
    - composer / submit()    compose and submit a manual payment
    - status()               settlement status

On a change signal for its session the workspace re-reads the ledger,
re-clamps the selection to what is still unpaid, and reports an overpaid
bill as an error.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import Callable, Optional

from splitbill.core.config import Settings, get_settings
from splitbill.services.changebus.base import BaseChangeBus, ChangeEvent
from splitbill.services.notifications.base import BaseNotificationSink
from splitbill.services.settlement.composer import ManualPaymentComposer, SubmitResult
from splitbill.services.settlement.entities import ItemKey
from splitbill.services.settlement.errors import ErrorCode, ValidationError
from splitbill.services.settlement.ledger import LedgerSnapshot, PaymentLedger
from splitbill.services.settlement.money import format_cents
from splitbill.services.settlement.planner import ItemSelectionPlanner, SelectionCandidate
from splitbill.services.settlement.remaining import RemainingItems
from splitbill.services.settlement.status import SettlementStatus

logger = logging.getLogger(__name__)


class SettlementWorkspace:
    """
    Open split-bill view of one session.

    Use open() to build one; it loads the ledger and subscribes to the
    change bus. close() drops the subscription and the pending state.

    Example:
        >>> workspace = await SettlementWorkspace.open(42, ledger, notifier, bus)
        >>> workspace.increment(12)
        >>> workspace.apply_selection()
        >>> result = await workspace.submit()
    """

    def __init__(
        self,
        session_id: int,
        ledger: PaymentLedger,
        notifier: BaseNotificationSink,
        change_bus: Optional[BaseChangeBus] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_id = session_id
        self.ledger = ledger
        self.notifier = notifier
        self.change_bus = change_bus
        self.composer = ManualPaymentComposer(session_id, ledger, notifier, settings=settings or get_settings())
        self.planner: Optional[ItemSelectionPlanner] = None
        self.snapshot: Optional[LedgerSnapshot] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @classmethod
    async def open(
        cls,
        session_id: int,
        ledger: PaymentLedger,
        notifier: BaseNotificationSink,
        change_bus: Optional[BaseChangeBus] = None,
        settings: Optional[Settings] = None,
    ) -> "SettlementWorkspace":
        workspace = cls(session_id, ledger, notifier, change_bus, settings)
        await workspace.refresh()
        if change_bus is not None:
            workspace._unsubscribe = change_bus.subscribe(workspace.on_change)
        return workspace

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.composer.reset()
        if self.planner is not None:
            self.planner.discard()

    # =========================================================================
    # REFRESH
    # =========================================================================

    async def on_change(self, event: ChangeEvent) -> None:
        if event.session_id is not None and event.session_id != self.session_id:
            return
        logger.debug(f"Workspace {self.session_id} refreshing after {event.entity} change")
        await self.refresh()

    async def refresh(self) -> SettlementStatus:
        """Re-read the ledger and rebase every derived value on it."""
        snapshot = await self.ledger.snapshot(self.session_id)
        self.snapshot = snapshot

        remaining = snapshot.remaining_items()
        if self.planner is None:
            self.planner = ItemSelectionPlanner(remaining)
        else:
            self.planner.refresh(remaining)

        status = self.composer.observe(snapshot)
        if status.is_overpaid:
            logger.error(
                f"Session {self.session_id} overpaid: paid {status.paid_cents} of {status.total_cents} cents"
            )
            self.notifier.error(
                f"Bill overpaid by {format_cents(-status.remaining_cents)}",
                self.session_id,
            )
        return status

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def remaining_items(self) -> RemainingItems:
        return self.planner.remaining

    def status(self) -> SettlementStatus:
        return self.composer.status

    def increment(self, item_id: ItemKey) -> bool:
        return self.planner.increment(item_id)

    def decrement(self, item_id: ItemKey) -> bool:
        return self.planner.decrement(item_id)

    def toggle_all(self, item_id: ItemKey) -> int:
        return self.planner.toggle_all(item_id)

    def set_covers(self, count: int) -> int:
        return self.planner.set_cover_selection(count)

    def subtotal(self) -> int:
        return self.planner.subtotal()

    def apply_selection(self) -> SelectionCandidate:
        """
        Hand the current selection to the composer.

        Raises:
            ValidationError: NOTHING_SELECTED (also reported to the operator)
        """
        try:
            candidate = self.composer.load_selection(self.planner)
        except ValidationError as e:
            if e.code == ErrorCode.NOTHING_SELECTED:
                self.notifier.warning("Select at least one item or cover", self.session_id)
            raise
        self.notifier.info(f"Selection applied: {format_cents(candidate.amount_cents)}", self.session_id)
        return candidate

    def split_equally(self, total_people: int, paying_people: int = 1) -> int:
        try:
            amount = self.composer.load_equal_share(total_people, paying_people)
        except ValidationError as e:
            self.notifier.error(e.message, self.session_id)
            raise
        if self.planner is not None:
            self.planner.discard()
        return amount

    def cancel(self) -> None:
        """Close the payment dialog without paying."""
        self.composer.reset()
        if self.planner is not None:
            self.planner.discard()

    async def submit(self) -> SubmitResult:
        result = await self.composer.submit()
        await self.refresh()
        return result

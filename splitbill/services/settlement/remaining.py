"""
Remaining-Items Aggregator

Derives, from a session's orders and its recorded split payments, how much
of every ordered line (and of the cover charge) is still unpaid.

Pure and re-entrant: the same inputs always give the same output and
nothing is cached between calls. Each order line is its own bucket keyed
by its row id, so the same dish ordered on two tickets stays two lines.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping, Optional

from splitbill.services.settlement.entities import (
    COVER_ITEM_ID,
    COVER_ITEM_NAME,
    ItemKey,
    Order,
    Session,
    SessionPayment,
    SessionPaymentItem,
)
from splitbill.services.settlement.errors import InvariantViolation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemainingLine:
    """Unpaid part of one order line or of the cover pseudo-item."""
    item_id: ItemKey
    name: str
    unit_price_cents: int
    ordered: int
    settled: int
    order_id: Optional[int] = None
    order_number: Optional[int] = None

    @property
    def remaining(self) -> int:
        return self.ordered - self.settled

    @property
    def remaining_total_cents(self) -> int:
        return self.remaining * self.unit_price_cents

    @property
    def is_cover(self) -> bool:
        return self.item_id == COVER_ITEM_ID


@dataclass(frozen=True)
class RemainingItems:
    """
    Result of the aggregation.

    Attributes:
        lines: Order lines that still have units to pay, in ticket order
        covers_remaining: Cover units still unpaid (0 without a cover charge)
        cover_unit_cents: Per-person cover price
    """
    lines: tuple[RemainingLine, ...]
    covers_remaining: int = 0
    cover_unit_cents: int = 0

    def __iter__(self) -> Iterator[RemainingLine]:
        return iter(self.lines)

    def __len__(self) -> int:
        return len(self.lines)

    def get(self, item_id: ItemKey) -> Optional[RemainingLine]:
        for line in self.lines:
            if line.item_id == item_id:
                return line
        return None

    def remaining_quantity(self, item_id: ItemKey) -> int:
        if item_id == COVER_ITEM_ID:
            return self.covers_remaining
        line = self.get(item_id)
        return line.remaining if line else 0

    def unit_price(self, item_id: ItemKey) -> int:
        if item_id == COVER_ITEM_ID:
            return self.cover_unit_cents
        line = self.get(item_id)
        return line.unit_price_cents if line else 0

    @property
    def cover_line(self) -> Optional[RemainingLine]:
        """The cover as a display line, when any cover unit is left."""
        if self.covers_remaining <= 0:
            return None
        return RemainingLine(
            item_id=COVER_ITEM_ID,
            name=COVER_ITEM_NAME,
            unit_price_cents=self.cover_unit_cents,
            ordered=self.covers_remaining,
            settled=0,
        )

    @property
    def is_empty(self) -> bool:
        return not self.lines and self.covers_remaining <= 0

    @property
    def total_cents(self) -> int:
        items = sum(line.remaining_total_cents for line in self.lines)
        return items + self.covers_remaining * self.cover_unit_cents


def settled_quantities(payments: Iterable[SessionPayment]) -> dict[ItemKey, int]:
    """Sum settled quantity per order line (and per cover) across the ledger."""
    settled: dict[ItemKey, int] = defaultdict(int)
    for payment in payments:
        for item in payment.items:
            settled[item.order_item_id] += item.quantity
    return dict(settled)


def ordered_quantities(session: Session, orders: Iterable[Order]) -> dict[ItemKey, int]:
    """Payable quantity per order line of the live orders, plus the covers."""
    ordered: dict[ItemKey, int] = defaultdict(int)
    for order in orders:
        if order.is_cancelled:
            continue
        for item in order.items:
            ordered[item.id] += item.quantity
    ordered[COVER_ITEM_ID] = session.covers
    return dict(ordered)


def overdrawn_items(
    ordered: Mapping[ItemKey, int],
    settled: Mapping[ItemKey, int],
    items: Iterable[SessionPaymentItem],
) -> list[ItemKey]:
    """
    Lines that a payment would settle beyond their ordered quantity.

    Stores call this inside their write lock or transaction, with
    `settled` summed over the payments already committed.
    """
    requested: dict[ItemKey, int] = defaultdict(int)
    for item in items:
        requested[item.order_item_id] += item.quantity
    return [
        key for key, quantity in requested.items()
        if settled.get(key, 0) + quantity > ordered.get(key, 0)
    ]


def aggregate_remaining_items(
    session: Session,
    orders: Iterable[Order],
    payments: Iterable[SessionPayment],
) -> RemainingItems:
    """
    Compute the unpaid quantity of every line of a session.

    Args:
        session: The dining tab (provides cover count and price)
        orders: All orders of the session, with their items
        payments: All ledger entries of the session

    Returns:
        RemainingItems with lines whose remaining quantity is > 0

    Raises:
        InvariantViolation: If two lines share an id, or more units were
            settled than ordered
    """
    payments = tuple(payments)
    settled = settled_quantities(payments)

    lines: list[RemainingLine] = []
    seen: set[int] = set()

    for order in sorted(orders, key=lambda o: (o.number, o.id)):
        if order.is_cancelled:
            continue
        for item in order.items:
            if item.id in seen:
                logger.error(
                    f"Session {session.id}: order item id {item.id} appears on more than one line"
                )
                raise InvariantViolation(f"Duplicate order item id {item.id} in session {session.id}")
            seen.add(item.id)

            paid = settled.get(item.id, 0)
            if paid > item.quantity:
                logger.error(
                    f"Session {session.id}: item {item.id} settled {paid} of {item.quantity}"
                )
                raise InvariantViolation(
                    f"Order item {item.id} settled {paid} units but only {item.quantity} were ordered"
                )
            if item.quantity - paid <= 0:
                continue
            lines.append(RemainingLine(
                item_id=item.id,
                name=item.name,
                unit_price_cents=item.unit_price_cents,
                ordered=item.quantity,
                settled=paid,
                order_id=order.id,
                order_number=order.number,
            ))

    orphans = [key for key in settled if key != COVER_ITEM_ID and key not in seen]
    if orphans:
        logger.warning(f"Session {session.id}: settled items without an order line: {orphans}")

    covers_remaining = 0
    covers_settled = settled.get(COVER_ITEM_ID, 0)
    if covers_settled > session.covers:
        logger.error(
            f"Session {session.id}: {covers_settled} covers settled of {session.covers}"
        )
        raise InvariantViolation(
            f"{covers_settled} covers settled but the session has {session.covers}"
        )
    if session.has_cover_charge:
        covers_remaining = session.covers - covers_settled

    return RemainingItems(
        lines=tuple(lines),
        covers_remaining=covers_remaining,
        cover_unit_cents=session.cover_unit_cents,
    )

"""
Item-Selection Planner

Lets an operator tentatively pick quantities of remaining lines (and cover
units) to build an item-based split. Selection alone commits nothing: only
the composer's submit() writes to the ledger.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from splitbill.services.settlement.entities import COVER_ITEM_ID, ItemKey, SessionPaymentItem
from splitbill.services.settlement.errors import ErrorCode, ValidationError
from splitbill.services.settlement.remaining import RemainingItems

logger = logging.getLogger(__name__)

NOTE_MAX_LENGTH = 40


@dataclass(frozen=True)
class SelectionCandidate:
    """What apply() hands to the composer."""
    amount_cents: int
    items: tuple[SessionPaymentItem, ...]
    note: str


def describe_items(items: tuple[SessionPaymentItem, ...], max_length: int = NOTE_MAX_LENGTH) -> str:
    """Describe rows as '2x Kebab, 1x Cola', truncated to max_length plus '...'."""
    text = ", ".join(f"{item.quantity}x {item.name}" for item in items)
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


class ItemSelectionPlanner:
    """
    Selection state over a RemainingItems snapshot.

    Every selected quantity stays within [0, remaining]. Adjustments at the
    boundary, or on lines that are not in the snapshot, are silently ignored.

    Example:
        >>> planner = ItemSelectionPlanner(remaining)
        >>> planner.increment(12)
        >>> planner.set_cover_selection(2)
        >>> candidate = planner.apply()
    """

    def __init__(self, remaining: RemainingItems):
        self._remaining = remaining
        self._selected: dict[int, int] = {}
        self._covers = 0

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def remaining(self) -> RemainingItems:
        return self._remaining

    @property
    def selected(self) -> dict[int, int]:
        return dict(self._selected)

    @property
    def selected_covers(self) -> int:
        return self._covers

    @property
    def is_empty(self) -> bool:
        return not self._selected and self._covers == 0

    def quantity(self, item_id: ItemKey) -> int:
        if item_id == COVER_ITEM_ID:
            return self._covers
        return self._selected.get(item_id, 0)

    # =========================================================================
    # ADJUSTMENTS
    # =========================================================================

    def increment(self, item_id: ItemKey) -> bool:
        """Add one unit. Returns False when nothing changed."""
        if item_id == COVER_ITEM_ID:
            before = self._covers
            return self.set_cover_selection(before + 1) != before
        current = self._selected.get(item_id, 0)
        if current >= self._remaining.remaining_quantity(item_id):
            return False
        self._selected[item_id] = current + 1
        return True

    def decrement(self, item_id: ItemKey) -> bool:
        """Remove one unit. Returns False when nothing changed."""
        if item_id == COVER_ITEM_ID:
            before = self._covers
            return self.set_cover_selection(before - 1) != before
        current = self._selected.get(item_id, 0)
        if current <= 0:
            return False
        if current == 1:
            del self._selected[item_id]
        else:
            self._selected[item_id] = current - 1
        return True

    def toggle_all(self, item_id: ItemKey) -> int:
        """Select the whole remaining quantity of a line, or clear it if already full."""
        available = self._remaining.remaining_quantity(item_id)
        if item_id == COVER_ITEM_ID:
            return self.set_cover_selection(0 if self._covers == available else available)
        if available <= 0:
            return 0
        if self._selected.get(item_id, 0) == available:
            self._selected.pop(item_id, None)
            return 0
        self._selected[item_id] = available
        return available

    def set_cover_selection(self, count: int) -> int:
        """Clamp count to [0, covers_remaining] and store it."""
        self._covers = max(0, min(int(count), self._remaining.covers_remaining))
        return self._covers

    def select(self, item_id: ItemKey, quantity: int) -> int:
        """Set a line's selected quantity directly, clamped to [0, remaining]."""
        if item_id == COVER_ITEM_ID:
            return self.set_cover_selection(quantity)
        wanted = max(0, min(int(quantity), self._remaining.remaining_quantity(item_id)))
        if wanted:
            self._selected[item_id] = wanted
        else:
            self._selected.pop(item_id, None)
        return wanted

    def discard(self) -> None:
        """Drop the selection. No ledger effect."""
        self._selected.clear()
        self._covers = 0

    def refresh(self, remaining: RemainingItems) -> None:
        """
        Rebase the selection on a newer snapshot.

        Called after another terminal settled part of the bill: lines that
        disappeared are dropped and quantities are clamped to what is left.
        """
        self._remaining = remaining
        for item_id in list(self._selected):
            available = remaining.remaining_quantity(item_id)
            if available <= 0:
                del self._selected[item_id]
            elif self._selected[item_id] > available:
                self._selected[item_id] = available
        self._covers = min(self._covers, remaining.covers_remaining)

    # =========================================================================
    # RESULTS
    # =========================================================================

    def subtotal(self) -> int:
        """Σ selected × unit price + selected covers × cover price, in cents."""
        items = sum(
            qty * self._remaining.unit_price(item_id)
            for item_id, qty in self._selected.items()
        )
        return items + self._covers * self._remaining.cover_unit_cents

    def payment_items(self) -> tuple[SessionPaymentItem, ...]:
        """Selection as ledger breakdown rows, in ticket order."""
        rows = []
        for line in self._remaining:
            qty = self._selected.get(line.item_id, 0)
            if qty > 0:
                rows.append(SessionPaymentItem(
                    order_item_id=line.item_id,
                    quantity=qty,
                    name=line.name,
                    unit_price_cents=line.unit_price_cents,
                ))
        if self._covers > 0:
            rows.append(SessionPaymentItem.for_cover(self._covers, self._remaining.cover_unit_cents))
        return tuple(rows)

    def apply(self) -> SelectionCandidate:
        """
        Turn the selection into a pre-filled payment candidate.

        The selection is kept so the finalized payment carries matching
        item rows; the composer clears it after a successful submit.

        Raises:
            ValidationError: NOTHING_SELECTED when no line and no cover is selected
        """
        if self.is_empty:
            raise ValidationError(ErrorCode.NOTHING_SELECTED, "Nothing selected")
        items = self.payment_items()
        candidate = SelectionCandidate(
            amount_cents=self.subtotal(),
            items=items,
            note=describe_items(items),
        )
        logger.debug(f"Selection applied: {candidate.note} ({candidate.amount_cents} cents)")
        return candidate


def equal_share(remaining_cents: int, total_people: int, paying_people: int) -> int:
    """
    Amount owed by paying_people out of total_people splitting the rest
    equally ("alla romana"), rounded half-up to the cent and capped at
    the remaining amount.

    Raises:
        ValidationError: INVALID_SPLIT for impossible head counts
    """
    if total_people < 1:
        raise ValidationError(ErrorCode.INVALID_SPLIT, "At least one person must share the bill")
    if not 1 <= paying_people <= total_people:
        raise ValidationError(
            ErrorCode.INVALID_SPLIT,
            f"Paying people must be between 1 and {total_people}",
        )
    share = (Decimal(remaining_cents) * paying_people / total_people).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return min(int(share), max(0, remaining_cents))


def equal_share_note(total_people: int, paying_people: int) -> str:
    return f"Equal split ({paying_people}/{total_people} people)"


def clamp_selection(
    remaining: RemainingItems,
    quantities: dict[int, int],
    covers: Optional[int] = None,
) -> ItemSelectionPlanner:
    """Build a planner from a requested selection, clamping every quantity."""
    planner = ItemSelectionPlanner(remaining)
    for item_id, qty in quantities.items():
        planner.select(item_id, qty)
    if covers:
        planner.set_cover_selection(covers)
    return planner

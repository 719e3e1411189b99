"""Tests for the item-selection planner and the equal split."""

import pytest

from splitbill.services.settlement.entities import COVER_ITEM_ID, SessionPaymentItem
from splitbill.services.settlement.errors import ErrorCode, ValidationError
from splitbill.services.settlement.planner import (
    ItemSelectionPlanner,
    clamp_selection,
    describe_items,
    equal_share,
    equal_share_note,
)
from splitbill.services.settlement.remaining import aggregate_remaining_items
from tests.factories import (
    COVER_SESSION_ID,
    bill_orders,
    bill_session,
    cover_orders,
    cover_session,
    make_payment,
)


@pytest.fixture
def bill_planner() -> ItemSelectionPlanner:
    return ItemSelectionPlanner(aggregate_remaining_items(bill_session(), bill_orders(), []))


@pytest.fixture
def cover_planner() -> ItemSelectionPlanner:
    return ItemSelectionPlanner(aggregate_remaining_items(cover_session(), cover_orders(), []))


class TestAdjustments:

    def test_increment_and_decrement(self, cover_planner):
        assert cover_planner.increment(31)
        assert cover_planner.increment(31)
        assert cover_planner.quantity(31) == 2

        assert cover_planner.decrement(31)
        assert cover_planner.quantity(31) == 1

    def test_increment_at_remaining_is_a_no_op(self, bill_planner):
        assert bill_planner.increment(11)
        assert not bill_planner.increment(11)
        assert bill_planner.quantity(11) == 1

    def test_decrement_at_zero_is_a_no_op(self, bill_planner):
        assert not bill_planner.decrement(11)
        assert bill_planner.is_empty

    def test_unknown_item_is_ignored(self, bill_planner):
        assert not bill_planner.increment(999)
        assert bill_planner.is_empty

    def test_toggle_all_selects_then_clears(self, cover_planner):
        assert cover_planner.toggle_all(31) == 2
        assert cover_planner.quantity(31) == 2
        assert cover_planner.toggle_all(31) == 0
        assert cover_planner.quantity(31) == 0

    def test_cover_selection_is_clamped(self, cover_planner):
        assert cover_planner.set_cover_selection(10) == 4
        assert cover_planner.set_cover_selection(-2) == 0

    def test_cover_increment_through_the_sentinel(self, cover_planner):
        assert cover_planner.increment(COVER_ITEM_ID)
        assert cover_planner.selected_covers == 1
        assert cover_planner.decrement(COVER_ITEM_ID)
        assert not cover_planner.decrement(COVER_ITEM_ID)


class TestSubtotalAndApply:

    def test_subtotal_includes_covers(self, cover_planner):
        cover_planner.increment(31)
        cover_planner.set_cover_selection(2)

        assert cover_planner.subtotal() == 1000 + 400

    def test_two_covers_contribute_four_dollars(self, cover_planner):
        cover_planner.set_cover_selection(2)

        assert cover_planner.subtotal() == 400

    def test_cover_selection_clamped_after_prior_payment(self):
        payments = [make_payment(1, 400, session_id=COVER_SESSION_ID, items=(
            SessionPaymentItem.for_cover(2, 200),
        ))]
        planner = ItemSelectionPlanner(aggregate_remaining_items(cover_session(), cover_orders(), payments))

        planner.set_cover_selection(2)
        assert not planner.increment(COVER_ITEM_ID)
        assert planner.set_cover_selection(3) == 2
        assert planner.subtotal() == 400

    def test_apply_builds_candidate(self, bill_planner):
        bill_planner.increment(11)
        bill_planner.increment(12)

        candidate = bill_planner.apply()

        assert candidate.amount_cents == 6000
        assert [item.order_item_id for item in candidate.items] == [11, 12]
        assert candidate.note == "1x Kebab, 1x Falafel"
        # Selection is kept until the payment is finalized
        assert bill_planner.quantity(11) == 1

    def test_apply_with_nothing_selected(self, bill_planner):
        with pytest.raises(ValidationError) as exc_info:
            bill_planner.apply()

        assert exc_info.value.code == ErrorCode.NOTHING_SELECTED

    def test_cover_rows_use_the_sentinel(self, cover_planner):
        cover_planner.set_cover_selection(1)

        items = cover_planner.payment_items()

        assert len(items) == 1
        assert items[0].is_cover
        assert items[0].unit_price_cents == 200

    def test_discard_has_no_effect_on_remaining(self, bill_planner):
        bill_planner.increment(11)
        bill_planner.discard()

        assert bill_planner.is_empty
        assert bill_planner.remaining.total_cents == 10000


class TestRefresh:

    def test_refresh_clamps_to_new_remaining(self, cover_planner):
        cover_planner.toggle_all(31)
        cover_planner.set_cover_selection(4)
        payments = [make_payment(1, 1600, session_id=COVER_SESSION_ID, items=(
            SessionPaymentItem(order_item_id=31, quantity=1, name="Pizza", unit_price_cents=1000),
            SessionPaymentItem.for_cover(3, 200),
        ))]

        cover_planner.refresh(aggregate_remaining_items(cover_session(), cover_orders(), payments))

        assert cover_planner.quantity(31) == 1
        assert cover_planner.selected_covers == 1

    def test_refresh_drops_settled_lines(self, bill_planner):
        bill_planner.increment(11)
        payments = [make_payment(1, 3000, items=(
            SessionPaymentItem(order_item_id=11, quantity=1, name="Kebab", unit_price_cents=3000),
        ))]

        bill_planner.refresh(aggregate_remaining_items(bill_session(), bill_orders(), payments))

        assert bill_planner.is_empty


class TestEqualShare:

    def test_one_of_four(self):
        assert equal_share(10000, 4, 1) == 2500

    def test_rounds_half_up(self):
        assert equal_share(1001, 2, 1) == 501

    def test_never_exceeds_remaining(self):
        assert equal_share(1000, 3, 3) == 1000

    @pytest.mark.parametrize("total,paying", [(0, 1), (3, 0), (3, 4)])
    def test_invalid_head_counts(self, total, paying):
        with pytest.raises(ValidationError) as exc_info:
            equal_share(1000, total, paying)
        assert exc_info.value.code == ErrorCode.INVALID_SPLIT

    def test_note(self):
        assert equal_share_note(4, 2) == "Equal split (2/4 people)"


def test_describe_items_truncates_long_notes():
    items = tuple(
        SessionPaymentItem(order_item_id=i, quantity=1, name=f"Very long dish name {i}", unit_price_cents=100)
        for i in range(1, 4)
    )

    note = describe_items(items)

    assert len(note) == 43
    assert note.endswith("...")


def test_clamp_selection_caps_each_quantity():
    remaining = aggregate_remaining_items(cover_session(), cover_orders(), [])

    planner = clamp_selection(remaining, {31: 5, 999: 1}, covers=9)

    assert planner.selected == {31: 2}
    assert planner.selected_covers == 4

"""Tests for the remaining-items aggregator."""

import pytest

from splitbill.services.settlement.entities import (
    COVER_ITEM_ID,
    Order,
    OrderItem,
    OrderStatus,
    SessionPaymentItem,
)
from splitbill.services.settlement.errors import InvariantViolation
from splitbill.services.settlement.remaining import aggregate_remaining_items, settled_quantities
from tests.factories import (
    BILL_SESSION_ID,
    COVER_SESSION_ID,
    bill_orders,
    bill_session,
    cover_orders,
    cover_session,
    make_payment,
)


def kebab(quantity: int = 1) -> SessionPaymentItem:
    return SessionPaymentItem(order_item_id=11, quantity=quantity, name="Kebab", unit_price_cents=3000)


class TestAggregateRemainingItems:

    def test_no_payments_lists_every_line(self):
        remaining = aggregate_remaining_items(bill_session(), bill_orders(), [])

        assert [line.item_id for line in remaining] == [11, 12, 21]
        assert remaining.total_cents == 10000
        assert remaining.covers_remaining == 0
        assert remaining.cover_line is None

    def test_fully_settled_line_is_dropped(self):
        payments = [make_payment(1, 3000, items=(kebab(),))]

        remaining = aggregate_remaining_items(bill_session(), bill_orders(), payments)

        assert remaining.get(11) is None
        assert remaining.remaining_quantity(11) == 0
        assert remaining.total_cents == 7000

    def test_partially_settled_line_keeps_the_rest(self):
        session = cover_session()
        payments = [make_payment(1, 1000, session_id=COVER_SESSION_ID, items=(
            SessionPaymentItem(order_item_id=31, quantity=1, name="Pizza", unit_price_cents=1000),
        ))]

        remaining = aggregate_remaining_items(session, cover_orders(), payments)

        line = remaining.get(31)
        assert line.ordered == 2
        assert line.settled == 1
        assert line.remaining == 1

    def test_amount_only_payments_do_not_consume_items(self):
        payments = [make_payment(1, 4000)]

        remaining = aggregate_remaining_items(bill_session(), bill_orders(), payments)

        assert remaining.total_cents == 10000

    def test_same_dish_on_two_tickets_stays_two_buckets(self):
        orders = [
            Order(id=1, session_id=BILL_SESSION_ID, number=1, total_cents=800,
                  items=(OrderItem(id=101, order_id=1, name="Kebab", unit_price_cents=800, quantity=1),)),
            Order(id=2, session_id=BILL_SESSION_ID, number=2, total_cents=800,
                  items=(OrderItem(id=102, order_id=2, name="Kebab", unit_price_cents=800, quantity=1),)),
        ]
        payments = [make_payment(1, 800, items=(
            SessionPaymentItem(order_item_id=101, quantity=1, name="Kebab", unit_price_cents=800),
        ))]

        remaining = aggregate_remaining_items(bill_session(), orders, payments)

        assert [line.item_id for line in remaining] == [102]
        assert remaining.get(102).order_number == 2

    def test_cancelled_orders_are_excluded(self):
        orders = bill_orders()
        orders[1] = Order(
            id=20,
            session_id=BILL_SESSION_ID,
            number=2,
            total_cents=4000,
            status=OrderStatus.CANCELLED,
            items=orders[1].items,
        )

        remaining = aggregate_remaining_items(bill_session(), orders, [])

        assert remaining.get(21) is None

    def test_covers_remaining(self):
        payments = [make_payment(1, 400, session_id=COVER_SESSION_ID, items=(
            SessionPaymentItem.for_cover(2, 200),
        ))]

        remaining = aggregate_remaining_items(cover_session(), cover_orders(), payments)

        assert remaining.covers_remaining == 2
        assert remaining.remaining_quantity(COVER_ITEM_ID) == 2
        assert remaining.unit_price(COVER_ITEM_ID) == 200
        assert remaining.cover_line.remaining == 2
        assert remaining.total_cents == 2000 + 400

    def test_is_idempotent(self):
        payments = [make_payment(1, 3000, items=(kebab(),))]

        first = aggregate_remaining_items(bill_session(), bill_orders(), payments)
        second = aggregate_remaining_items(bill_session(), bill_orders(), payments)

        assert first == second

    def test_over_settled_item_is_an_invariant_violation(self):
        payments = [
            make_payment(1, 3000, items=(kebab(),)),
            make_payment(2, 3000, items=(kebab(),)),
        ]

        with pytest.raises(InvariantViolation):
            aggregate_remaining_items(bill_session(), bill_orders(), payments)

    def test_over_settled_covers_is_an_invariant_violation(self):
        payments = [make_payment(1, 1000, session_id=COVER_SESSION_ID, items=(
            SessionPaymentItem.for_cover(5, 200),
        ))]

        with pytest.raises(InvariantViolation):
            aggregate_remaining_items(cover_session(), cover_orders(), payments)

    def test_duplicate_item_ids_are_rejected(self):
        orders = [
            Order(id=1, session_id=BILL_SESSION_ID, total_cents=800,
                  items=(OrderItem(id=7, order_id=1, name="Kebab", unit_price_cents=800, quantity=1),)),
            Order(id=2, session_id=BILL_SESSION_ID, number=2, total_cents=800,
                  items=(OrderItem(id=7, order_id=2, name="Kebab", unit_price_cents=800, quantity=1),)),
        ]

        with pytest.raises(InvariantViolation):
            aggregate_remaining_items(bill_session(), orders, [])


def test_settled_quantities_sums_across_payments():
    payments = [
        make_payment(1, 3000, items=(kebab(),)),
        make_payment(2, 400, items=(SessionPaymentItem.for_cover(2, 200),)),
        make_payment(3, 200, items=(SessionPaymentItem.for_cover(1, 200),)),
    ]

    assert settled_quantities(payments) == {11: 1, COVER_ITEM_ID: 3}

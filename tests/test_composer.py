"""Tests for the manual payment composer and its submit()."""

import asyncio

import pytest

from splitbill.core.config import get_settings
from splitbill.services.notifications import Severity
from splitbill.services.settlement.composer import SubmitResult
from splitbill.services.settlement.entities import (
    COVER_ITEM_ID,
    CloseMethod,
    PaymentMethod,
    SessionPaymentItem,
    SessionStatus,
)
from splitbill.services.settlement.errors import (
    ConcurrencyConflict,
    ErrorCode,
    StoreFailure,
    ValidationError,
)
from splitbill.services.settlement.planner import ItemSelectionPlanner, SelectionCandidate
from splitbill.services.settlement.remaining import settled_quantities
from splitbill.services.settlement.status import FiscalStatus
from tests.factories import BILL_SESSION_ID, COVER_SESSION_ID


async def pay(composer, amount, method=PaymentMethod.CASH, **form):
    await composer.refresh()
    composer.set_amount(amount)
    composer.method = method
    for name, value in form.items():
        setattr(composer, name, value)
    return await composer.submit()


async def planner_for(ledger, session_id: int) -> ItemSelectionPlanner:
    snapshot = await ledger.snapshot(session_id)
    return ItemSelectionPlanner(snapshot.remaining_items())


def selection(*lines) -> SelectionCandidate:
    """One unit of each (item_id, name, unit price) line."""
    items = tuple(
        SessionPaymentItem(order_item_id=item_id, quantity=1, name=name, unit_price_cents=price)
        for item_id, name, price in lines
    )
    return SelectionCandidate(
        amount_cents=sum(item.line_total_cents for item in items),
        items=items,
        note="",
    )


class TestForm:

    def test_change_for_cash(self, make_composer):
        composer = make_composer()
        composer.set_amount("60.00")
        composer.set_tendered("70")

        assert composer.change() == 1000

    def test_no_change_for_card(self, make_composer):
        composer = make_composer()
        composer.set_amount("60.00")
        composer.set_tendered("70")
        composer.method = PaymentMethod.CARD

        assert composer.change() is None

    def test_change_without_tendered(self, make_composer):
        composer = make_composer()
        composer.set_amount("60.00")

        assert composer.change() is None

    async def test_load_equal_share(self, make_composer):
        composer = make_composer()
        await composer.refresh()

        assert composer.load_equal_share(4, 1) == 2500
        assert composer.note == "Equal split (1/4 people)"
        assert composer.items == ()

    async def test_load_selection_from_planner(self, make_composer, ledger):
        composer = make_composer()
        planner = await planner_for(ledger, BILL_SESSION_ID)
        planner.increment(21)

        candidate = composer.load_selection(planner)

        assert composer.amount_cents == 4000
        assert composer.items == candidate.items
        assert composer.note == "1x Mixed grill"

    def test_reset_clears_the_form(self, make_composer):
        composer = make_composer()
        composer.set_amount("10")
        composer.note = "Anna"
        composer.fiscal_flag = True
        composer.use_attempt_key("abc")

        composer.reset()

        assert composer.amount_cents is None
        assert composer.note == ""
        assert composer.fiscal_flag is False
        assert composer.attempt_key is None


class TestSplitScenario:

    async def test_amount_then_items_settles_and_closes(self, make_composer, ledger, store, notifier):
        composer = make_composer()

        first = await pay(composer, "40.00", PaymentMethod.CARD)

        assert first.status.remaining_cents == 6000
        assert not first.closed
        assert first.change_cents is None
        assert notifier.messages(Severity.SUCCESS) == ["Payment of €40.00 added"]

        planner = await planner_for(ledger, BILL_SESSION_ID)
        planner.increment(11)
        planner.increment(12)
        composer.load_selection(planner)
        composer.method = PaymentMethod.CASH
        composer.set_tendered("70.00")
        composer.fiscal_flag = True

        second = await composer.submit()

        assert second.payment.amount_cents == 6000
        assert [item.order_item_id for item in second.payment.items] == [11, 12]
        assert second.payment.notes == "1x Kebab, 1x Falafel"
        assert second.change_cents == 1000
        assert second.status.remaining_cents == 0
        assert second.status.fiscal_status is FiscalStatus.PARTIAL
        assert second.status.fiscal_cents == 6000
        assert second.closed
        assert not second.status.is_open
        assert planner.is_empty

        session = await store.get_session(BILL_SESSION_ID)
        assert session.status == SessionStatus.CLOSED
        assert session.close_method == CloseMethod.SPLIT
        assert session.fiscal_flag is False

        snapshot = await ledger.snapshot(BILL_SESSION_ID)
        assert [line.item_id for line in snapshot.remaining_items()] == [21]

    async def test_all_fiscal_payments_close_fiscal(self, make_composer, store):
        composer = make_composer()

        await pay(composer, "50", fiscal_flag=True)
        result = await pay(composer, "50", fiscal_flag=True)

        assert result.status.fiscal_status is FiscalStatus.ALL
        session = await store.get_session(BILL_SESSION_ID)
        assert session.fiscal_flag is True

    async def test_covers_can_be_paid_separately(self, make_composer, ledger):
        composer = make_composer(COVER_SESSION_ID)
        planner = await planner_for(ledger, COVER_SESSION_ID)
        planner.set_cover_selection(2)

        await composer.refresh()
        composer.load_selection(planner)
        result = await composer.submit()

        assert result.payment.amount_cents == 400
        assert result.payment.items[0].order_item_id == COVER_ITEM_ID
        snapshot = await ledger.snapshot(COVER_SESSION_ID)
        assert snapshot.remaining_items().covers_remaining == 2
        assert snapshot.status().remaining_cents == 2400

    async def test_signals_the_change_bus(self, make_composer, bus):
        await pay(make_composer(), "10")

        assert [event.entity for event in bus.published] == ["session_payments"]
        assert bus.published[0].session_id == BILL_SESSION_ID


class TestValidation:

    async def test_zero_amount(self, make_composer, store, notifier):
        composer = make_composer()

        with pytest.raises(ValidationError) as exc_info:
            await pay(composer, "0")

        assert exc_info.value.code == ErrorCode.INVALID_AMOUNT
        assert await store.list_session_payments(BILL_SESSION_ID) == []
        assert notifier.messages(Severity.ERROR) == ["Amount must be greater than zero"]

    async def test_missing_amount(self, make_composer):
        composer = make_composer()

        with pytest.raises(ValidationError) as exc_info:
            await composer.submit()

        assert exc_info.value.code == ErrorCode.INVALID_AMOUNT

    async def test_amount_above_remaining_is_rejected_not_clamped(self, make_composer, store):
        composer = make_composer()
        await pay(composer, "40")

        composer.set_amount("61.00")
        with pytest.raises(ValidationError) as exc_info:
            await composer.submit()

        assert exc_info.value.code == ErrorCode.AMOUNT_EXCEEDS_REMAINING
        payments = await store.list_session_payments(BILL_SESSION_ID)
        assert [p.amount_cents for p in payments] == [4000]
        # The form is kept so the operator can correct it
        assert composer.amount_cents == 6100

    async def test_closed_session(self, make_composer):
        composer = make_composer()
        await pay(composer, "100")

        with pytest.raises(ValidationError) as exc_info:
            await pay(composer, "1")

        assert exc_info.value.code == ErrorCode.SESSION_CLOSED

    async def test_smac_disabled_drops_the_flag(self, make_composer, monkeypatch):
        monkeypatch.setenv("SMAC_ENABLED", "false")
        get_settings.cache_clear()
        composer = make_composer()

        result = await pay(composer, "10", fiscal_flag=True)

        assert result.payment.fiscal_flag is False

    async def test_no_auto_close_when_disabled(self, make_composer, store, monkeypatch):
        monkeypatch.setenv("AUTO_CLOSE_ON_SETTLE", "false")
        get_settings.cache_clear()
        composer = make_composer()

        result = await pay(composer, "100")

        assert not result.closed
        assert result.status.can_close
        session = await store.get_session(BILL_SESSION_ID)
        assert session.is_open


class TestConcurrency:

    async def test_second_terminal_gets_a_conflict(self, make_composer, store, notifier):
        first = make_composer()
        second = make_composer()
        await first.refresh()
        await second.refresh()

        first.set_amount("60")
        await first.submit()

        second.set_amount("60")
        with pytest.raises(ConcurrencyConflict) as exc_info:
            await second.submit()

        assert exc_info.value.remaining_cents == 4000
        assert notifier.messages(Severity.WARNING)[-1].endswith("Remaining: €40.00")
        payments = await store.list_session_payments(BILL_SESSION_ID)
        assert sum(p.amount_cents for p in payments) == 6000

    async def test_stale_item_selection_conflicts(self, make_composer, ledger):
        first = make_composer()
        second = make_composer()
        await first.refresh()
        await second.refresh()

        planner_a = await planner_for(ledger, BILL_SESSION_ID)
        planner_b = await planner_for(ledger, BILL_SESSION_ID)
        planner_a.increment(11)
        planner_b.increment(11)
        first.load_selection(planner_a)
        second.load_selection(planner_b)

        await first.submit()

        with pytest.raises(ConcurrencyConflict):
            await second.submit()

    async def test_interleaved_item_selections_settle_the_item_once(self, make_composer, ledger, store):
        store.latency = 0.05
        first = make_composer()
        second = make_composer()
        await first.refresh()
        await second.refresh()
        for composer in (first, second):
            planner = await planner_for(ledger, BILL_SESSION_ID)
            planner.increment(11)
            composer.load_selection(planner)

        results = await asyncio.gather(first.submit(), second.submit(), return_exceptions=True)

        assert sum(isinstance(r, SubmitResult) for r in results) == 1
        assert sum(isinstance(r, ConcurrencyConflict) for r in results) == 1
        payments = await store.list_session_payments(BILL_SESSION_ID)
        assert [[(i.order_item_id, i.quantity) for i in p.items] for p in payments] == [[(11, 1)]]
        snapshot = await ledger.snapshot(BILL_SESSION_ID)
        assert [line.item_id for line in snapshot.remaining_items()] == [12, 21]

    async def test_retry_after_conflict_is_plain_validation(self, make_composer):
        first = make_composer()
        second = make_composer()
        await first.refresh()
        await second.refresh()
        first.set_amount("60")
        await first.submit()

        second.set_amount("60")
        with pytest.raises(ConcurrencyConflict):
            await second.submit()
        with pytest.raises(ValidationError) as exc_info:
            await second.submit()

        assert exc_info.value.code == ErrorCode.AMOUNT_EXCEEDS_REMAINING

    async def test_store_limit_check_catches_the_race(self, make_composer, ledger, store, monkeypatch):
        composer = make_composer()
        await composer.refresh()
        composer.set_amount("70")
        # Another terminal commits between the re-read and the append
        original_snapshot = ledger.snapshot
        raced = []

        async def racing_snapshot(session_id):
            snapshot = await original_snapshot(session_id)
            if not raced:
                raced.append(session_id)
                other = make_composer()
                await other.refresh()
                other.set_amount("50")
                await other.submit()
            return snapshot

        monkeypatch.setattr(ledger, "snapshot", racing_snapshot)

        with pytest.raises(ConcurrencyConflict) as exc_info:
            await composer.submit()

        assert exc_info.value.remaining_cents == 5000
        payments = await store.list_session_payments(BILL_SESSION_ID)
        assert [p.amount_cents for p in payments] == [5000]


class TestStoreFailure:

    async def test_failure_is_reported_and_nothing_is_written(self, make_composer, store, notifier):
        store.fail_next_appends = 1
        composer = make_composer()

        with pytest.raises(StoreFailure):
            await pay(composer, "40")

        assert await store.list_session_payments(BILL_SESSION_ID) == []
        assert notifier.messages(Severity.ERROR) == ["Could not record the payment. Please try again."]
        assert composer.amount_cents == 4000
        assert composer.attempt_key is not None

    async def test_manual_retry_writes_once(self, make_composer, store):
        store.fail_next_appends = 1
        composer = make_composer()
        with pytest.raises(StoreFailure):
            await pay(composer, "40")
        key = composer.attempt_key

        result = await composer.submit()

        assert result.payment.idempotency_key == key
        payments = await store.list_session_payments(BILL_SESSION_ID)
        assert len(payments) == 1


class TestIdempotency:

    async def test_same_key_commits_once(self, make_composer, store):
        first = make_composer()
        first.use_attempt_key("terminal-1:attempt-1")
        committed = await pay(first, "40")

        retry = make_composer()
        retry.use_attempt_key("terminal-1:attempt-1")
        again = await pay(retry, "40")

        assert again.payment.id == committed.payment.id
        payments = await store.list_session_payments(BILL_SESSION_ID)
        assert len(payments) == 1

    async def test_key_is_dropped_after_success(self, make_composer, store):
        composer = make_composer()
        await pay(composer, "10")
        await pay(composer, "10")

        payments = await store.list_session_payments(BILL_SESSION_ID)
        assert len(payments) == 2
        assert payments[0].idempotency_key != payments[1].idempotency_key

    async def test_changed_form_does_not_reuse_a_committed_attempt(self, make_composer, store):
        first = make_composer()
        first.use_attempt_key("terminal-1:attempt-1")
        await pay(first, "40")

        retry = make_composer()
        retry.use_attempt_key("terminal-1:attempt-1")
        with pytest.raises(ValidationError) as exc_info:
            await pay(retry, "25")

        assert exc_info.value.code == ErrorCode.ATTEMPT_ALREADY_RECORDED
        assert "€40.00" in exc_info.value.message
        assert retry.attempt_key is None

        result = await retry.submit()

        assert result.payment.amount_cents == 2500
        payments = await store.list_session_payments(BILL_SESSION_ID)
        assert [p.amount_cents for p in payments] == [4000, 2500]

    async def test_changed_items_do_not_reuse_a_committed_attempt(self, make_composer, store):
        first = make_composer()
        first.use_attempt_key("terminal-1:attempt-2")
        await first.refresh()
        first.load_selection(selection((11, "Kebab", 3000)))
        await first.submit()

        retry = make_composer()
        retry.use_attempt_key("terminal-1:attempt-2")
        await retry.refresh()
        retry.load_selection(selection((12, "Falafel", 3000)))

        with pytest.raises(ValidationError) as exc_info:
            await retry.submit()

        assert exc_info.value.code == ErrorCode.ATTEMPT_ALREADY_RECORDED
        assert len(await store.list_session_payments(BILL_SESSION_ID)) == 1


class TestLedgerProperties:

    STEPS = [
        ("amount", "25.00"),
        ("amount", "0"),
        ("items", (11, "Kebab", 3000)),
        ("items", (11, "Kebab", 3000)),
        ("amount", "80.00"),
        ("items", (12, "Falafel", 3000)),
        ("amount", "15.01"),
        ("amount", "15.00"),
        ("amount", "0.01"),
    ]

    async def test_remaining_is_monotonic_and_paid_is_bounded(self, make_composer, ledger):
        composer = make_composer()
        snapshot = await ledger.snapshot(BILL_SESSION_ID)
        previous = snapshot.status().remaining_cents
        effective_total = snapshot.session.effective_total_cents
        committed = 0

        for kind, value in self.STEPS:
            await composer.refresh()
            if kind == "amount":
                composer.set_amount(value)
            else:
                composer.load_selection(selection(value))
            try:
                await composer.submit()
                committed += 1
            except ValidationError:
                composer.reset()

            snapshot = await ledger.snapshot(BILL_SESSION_ID)
            status = snapshot.status()
            assert status.remaining_cents <= previous
            assert status.paid_cents <= effective_total
            snapshot.remaining_items()
            previous = status.remaining_cents

        assert committed == 4
        assert previous == 0

    async def test_concurrent_item_submits_conserve_every_line(self, make_composer, ledger, store):
        store.latency = 0.01
        composers = [make_composer() for _ in range(4)]
        for composer in composers:
            await composer.refresh()
        composers[0].load_selection(selection((11, "Kebab", 3000)))
        composers[1].load_selection(selection((11, "Kebab", 3000), (12, "Falafel", 3000)))
        composers[2].load_selection(selection((12, "Falafel", 3000)))
        composers[3].load_selection(selection((21, "Mixed grill", 4000)))

        results = await asyncio.gather(*(c.submit() for c in composers), return_exceptions=True)

        assert all(isinstance(r, (SubmitResult, ConcurrencyConflict)) for r in results)
        payments = await store.list_session_payments(BILL_SESSION_ID)
        settled = settled_quantities(payments)
        assert all(quantity <= 1 for quantity in settled.values())
        assert sum(p.amount_cents for p in payments) <= 10000
        snapshot = await ledger.snapshot(BILL_SESSION_ID)
        assert snapshot.status().remaining_cents == snapshot.remaining_items().total_cents


class TestPaymentLedger:

    async def test_set_fiscal_flag_on_open_bill(self, ledger, bus):
        snapshot = await ledger.set_fiscal_flag(BILL_SESSION_ID, True)

        assert snapshot.session.fiscal_flag is True
        assert snapshot.status().fiscal_status == FiscalStatus.ALL
        assert [event.entity for event in bus.published] == ["table_sessions"]

    async def test_set_fiscal_flag_on_closed_bill(self, ledger, store, bus):
        await store.close_session(BILL_SESSION_ID, CloseMethod.CASH, fiscal_flag=False)

        with pytest.raises(ValidationError) as exc_info:
            await ledger.set_fiscal_flag(BILL_SESSION_ID, True)

        assert exc_info.value.code == ErrorCode.SESSION_CLOSED
        assert bus.published == []
        assert (await store.get_session(BILL_SESSION_ID)).fiscal_flag is False

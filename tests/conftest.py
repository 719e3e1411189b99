"""Shared fixtures: seeded in-memory store, recording sink, in-process bus."""

import pytest

from splitbill.core.config import get_settings
from splitbill.services.changebus import InProcessChangeBus, reset_change_bus
from splitbill.services.notifications import MockNotificationSink, reset_notification_sink
from splitbill.services.settlement.composer import ManualPaymentComposer
from splitbill.services.settlement.ledger import PaymentLedger
from splitbill.services.store import InMemorySessionStore, reset_session_store
from tests.factories import (
    BILL_SESSION_ID,
    bill_orders,
    bill_session,
    cover_orders,
    cover_session,
)


@pytest.fixture(autouse=True)
def development_env(monkeypatch):
    monkeypatch.setenv("ENV_MODE", "development")
    monkeypatch.setenv("SMAC_ENABLED", "true")
    monkeypatch.setenv("AUTO_CLOSE_ON_SETTLE", "true")
    get_settings.cache_clear()
    reset_session_store()
    reset_change_bus()
    reset_notification_sink()
    yield
    get_settings.cache_clear()
    reset_session_store()
    reset_change_bus()
    reset_notification_sink()


@pytest.fixture
def store() -> InMemorySessionStore:
    store = InMemorySessionStore()
    store.add_session(bill_session())
    store.add_orders(bill_orders())
    store.add_session(cover_session())
    store.add_orders(cover_orders())
    # Keep generated ids clear of the seeded ones
    for _ in range(100):
        store.next_id()
    return store


@pytest.fixture
def bus() -> InProcessChangeBus:
    return InProcessChangeBus()


@pytest.fixture
def notifier() -> MockNotificationSink:
    return MockNotificationSink(max_visible=3)


@pytest.fixture
def ledger(store, bus) -> PaymentLedger:
    return PaymentLedger(store, bus)


@pytest.fixture
def make_composer(ledger, notifier):
    def factory(session_id: int = BILL_SESSION_ID) -> ManualPaymentComposer:
        return ManualPaymentComposer(session_id, ledger, notifier, settings=get_settings())
    return factory

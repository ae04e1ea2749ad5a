import pytest

from customer_hub.models import SyncCursor, db
from customer_hub.sync import SyncCursorStore, get_cursor, update_cursor


@pytest.fixture
def store(app):
    return SyncCursorStore()


def test_missing_cursor_reads_as_none(store):
    assert store.get_cursor("storefront_customer") is None
    assert store.get_state("storefront_customer") is None


def test_update_cursor_creates_then_increments(store):
    store.update_cursor("storefront_customer", {"page": 1}, 10)
    store.update_cursor("storefront_customer", {"page": 2}, 5)
    db.session.commit()

    state = store.get_state("storefront_customer")
    assert state.cursor_value == {"page": 2}
    assert state.items_synced == 15
    assert state.last_error is None
    assert state.last_success_at is not None


def test_error_keeps_previous_success_time(store):
    store.update_cursor("marketplace_order", {"since": "2024-01-01"}, 3)
    db.session.commit()
    succeeded_at = store.get_state("marketplace_order").last_success_at

    store.update_cursor("marketplace_order", {"since": "2024-01-02"}, 1, error="1 of 2 record(s) failed")
    db.session.commit()

    state = store.get_state("marketplace_order")
    assert state.cursor_value == {"since": "2024-01-02"}
    assert state.items_synced == 4
    assert state.last_error == "1 of 2 record(s) failed"
    assert state.last_success_at == succeeded_at


def test_first_write_with_error_has_no_success_time(store):
    store.update_cursor("fulfillment_shipment", {"page": 1}, 0, error="boom")
    db.session.commit()

    state = store.get_state("fulfillment_shipment")
    assert state.last_success_at is None
    assert state.last_error == "boom"


def test_clean_batch_clears_last_error(store):
    store.update_cursor("accounting_customer", {"page": 1}, 0, error="boom")
    store.update_cursor("accounting_customer", {"page": 2}, 2)
    db.session.commit()

    assert store.get_state("accounting_customer").last_error is None


def test_reset_cursor_keeps_counters(store):
    store.update_cursor("storefront_customer", {"page": 9}, 42)
    db.session.commit()

    assert store.reset_cursor("storefront_customer") is True
    db.session.commit()

    state = store.get_state("storefront_customer")
    assert state.cursor_value is None
    assert state.items_synced == 42
    assert store.reset_cursor("unknown_source") is False


@pytest.mark.parametrize(
    "source_type, delta, message",
    [
        ("", 0, "source_type is required"),
        ("storefront_customer", -1, "cannot be negative"),
    ],
)
def test_update_cursor_rejects_bad_input(store, source_type, delta, message):
    with pytest.raises(ValueError, match=message):
        store.update_cursor(source_type, {"page": 1}, delta)


def test_module_helpers(app):
    update_cursor("storefront_customer", {"page": 3}, 7)
    db.session.commit()

    assert get_cursor("storefront_customer") == {"page": 3}
    assert db.session.get(SyncCursor, "storefront_customer").items_synced == 7

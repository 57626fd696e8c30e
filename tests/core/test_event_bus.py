"""Tests for EventBus."""

import logging
from decimal import Decimal

import pytest

from core.event_bus import EventBus
from core.events import InvoiceCreated, InvoiceFinalized, InvoicePaid
from core.exceptions import ValidationError
from core.models import Invoice


# =============================================================================
# FIXTURES: in-memory store rows, no DB needed
# =============================================================================


@pytest.fixture
def _invoice(store):
    return Invoice.model_validate(store.seed_invoice(final_amount=Decimal("500")))


# =============================================================================
# SUBSCRIBE AND PUBLISH
# =============================================================================


class TestSubscribeAndPublish:

    def test_single_handler_receives_the_exact_event_object(self, _invoice):
        bus = EventBus()
        received = []
        bus.subscribe("InvoiceCreated", received.append)

        event = InvoiceCreated.create(_invoice)
        bus.publish(event)

        assert len(received) == 1
        assert received[0] is event

    def test_handler_can_read_payload_fields(self, _invoice):
        bus = EventBus()
        numbers = []
        bus.subscribe("InvoiceCreated", lambda e: numbers.append(e.invoice.invoice_number))

        bus.publish(InvoiceCreated.create(_invoice))

        assert numbers == [_invoice.invoice_number]

    def test_multiple_handlers_called_in_subscription_order(self, _invoice):
        bus = EventBus()
        order = []
        bus.subscribe("InvoicePaid", lambda e: order.append("A"))
        bus.subscribe("InvoicePaid", lambda e: order.append("B"))
        bus.subscribe("InvoicePaid", lambda e: order.append("C"))

        bus.publish(InvoicePaid.create(_invoice))

        assert order == ["A", "B", "C"]

    def test_type_isolation_only_matching_subscribers_called(self, _invoice):
        bus = EventBus()
        created_calls = []
        paid_calls = []
        bus.subscribe("InvoiceCreated", created_calls.append)
        bus.subscribe("InvoicePaid", paid_calls.append)

        bus.publish(InvoiceCreated.create(_invoice))

        assert len(created_calls) == 1
        assert paid_calls == []

    def test_no_subscribers_does_not_raise(self, _invoice):
        bus = EventBus()
        bus.publish(InvoiceCreated.create(_invoice))

    def test_publish_all_keeps_order(self, _invoice):
        bus = EventBus()
        received = []
        bus.subscribe("InvoiceFinalized", received.append)
        bus.subscribe("InvoicePaid", received.append)

        events = [InvoiceFinalized.create(_invoice), InvoicePaid.create(_invoice)]
        bus.publish_all(events)

        assert received == events

    def test_subscriber_count(self):
        bus = EventBus()
        bus.subscribe("InvoicePaid", lambda e: None)
        bus.subscribe("InvoicePaid", lambda e: None)

        assert bus.subscriber_count("InvoicePaid") == 2
        assert bus.subscriber_count("InvoiceCreated") == 0


# =============================================================================
# HANDLER ERROR ISOLATION
# =============================================================================


class TestHandlerErrorIsolation:

    def test_handler_exception_does_not_propagate(self, _invoice):
        bus = EventBus()
        bus.subscribe("InvoiceCreated", lambda e: (_ for _ in ()).throw(RuntimeError("boom")))

        # Must not raise
        bus.publish(InvoiceCreated.create(_invoice))

    def test_handler_exception_is_logged_with_event_type_and_event_id(self, _invoice, caplog):
        bus = EventBus()

        def failing_handler(event):
            raise ValueError("notification failed")

        bus.subscribe("InvoicePaid", failing_handler)

        with caplog.at_level(logging.ERROR, logger="core.event_bus"):
            event = InvoicePaid.create(_invoice)
            bus.publish(event)

        assert "notification failed" in caplog.text
        assert "InvoicePaid" in caplog.text
        assert event.event_id in caplog.text

    def test_all_handlers_run_even_if_some_fail(self, _invoice):
        bus = EventBus()
        results = []

        bus.subscribe("InvoicePaid", lambda e: (_ for _ in ()).throw(RuntimeError("fail 1")))
        bus.subscribe("InvoicePaid", lambda e: results.append("survived_1"))
        bus.subscribe("InvoicePaid", lambda e: (_ for _ in ()).throw(RuntimeError("fail 2")))
        bus.subscribe("InvoicePaid", lambda e: results.append("survived_2"))

        bus.publish(InvoicePaid.create(_invoice))

        assert results == ["survived_1", "survived_2"]

    def test_failed_handler_does_not_stop_publish_all(self, _invoice):
        bus = EventBus()
        received = []
        bus.subscribe("InvoiceFinalized", lambda e: (_ for _ in ()).throw(RuntimeError("boom")))
        bus.subscribe("InvoicePaid", received.append)

        bus.publish_all([InvoiceFinalized.create(_invoice), InvoicePaid.create(_invoice)])

        assert len(received) == 1


class TestPublishAfterCommit:
    """Services publish only once their transaction has committed."""

    def test_rolled_back_create_publishes_nothing(self, make_invoice, published):
        with pytest.raises(ValidationError):
            make_invoice(matter_ids=[300])

        assert published == []

    def test_handler_sees_committed_invoice(self, store, invoice_service, event_bus, make_invoice):
        seen = []
        event_bus.subscribe(
            "InvoiceCreated",
            lambda e: seen.append(e.invoice.id in store.data["invoices"]),
        )

        make_invoice()

        assert seen == [True]

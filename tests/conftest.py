"""Shared test fixtures for the billing test suite."""

import pytest
from decimal import Decimal
from uuid import UUID
from pathlib import Path

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from utils.user_context import user_context, clear_current_user_id
from tests.fakes import FakeDocumentGenerator, FakeInvoiceStore, FakeObjectStore, TEST_USER_ID


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

# Secondary test user - partner shares and attribution checks
TEST_USER_B_ID = UUID("00000000-0000-0000-0000-000000000002")


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def test_user_id() -> UUID:
    """The primary test user's ID."""
    return TEST_USER_ID


@pytest.fixture
def test_user_b_id() -> UUID:
    """The secondary test user's ID."""
    return TEST_USER_B_ID


@pytest.fixture
def as_test_user(test_user_id):
    """Context manager that sets primary test user context."""
    with user_context(test_user_id):
        yield test_user_id


# =============================================================================
# STORE AND COLLABORATOR FIXTURES
# =============================================================================


@pytest.fixture
def config():
    from core.config import BillingConfig
    return BillingConfig()


@pytest.fixture
def store():
    """
    In-memory store seeded with a small client group.

    Clients 1 and 2 share group 10; client 3 has no group. Matter 100 (INR)
    and matter 101 (USD) belong to client 1; matter 300 to client 3.
    """
    store = FakeInvoiceStore()
    store.add_client(1, "Acme Ltd", group_id=10, address="1 Marine Drive, Mumbai")
    store.add_client(2, "Acme Holdings", group_id=10)
    store.add_client(3, "Solo LLP")
    store.add_matter(100, client_id=1, currency="INR", matter_title="Acme v. Beta")
    store.add_matter(101, client_id=1, currency="USD", matter_title="Acme US Licensing")
    store.add_matter(300, client_id=3, matter_title="Solo Advisory")
    return store


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def documents():
    return FakeDocumentGenerator()


@pytest.fixture
def event_bus():
    from core.event_bus import EventBus
    return EventBus()


@pytest.fixture
def published(event_bus):
    """Every event published on the bus, in order."""
    events = []
    for name in (
        "InvoiceCreated", "InvoiceFinalized", "InvoiceSplit",
        "InvoiceUploaded", "InvoicePaid", "PaymentRecorded",
    ):
        event_bus.subscribe(name, events.append)
    return events


@pytest.fixture
def audit():
    from core.audit import AuditLogger
    return AuditLogger()


@pytest.fixture
def currency_service(store, config):
    from core.services.currency_service import CurrencyService
    return CurrencyService(store, config)


@pytest.fixture
def number_service(store, config):
    from core.services.invoice_number_service import InvoiceNumberService
    return InvoiceNumberService(store, config)


@pytest.fixture
def line_item_service(config, currency_service):
    from core.services.line_item_service import LineItemService
    return LineItemService(config, currency_service)


@pytest.fixture
def split_service(store, config, audit):
    from core.services.split_service import SplitService
    return SplitService(store, config, audit)


@pytest.fixture
def payment_service(store, config, audit, event_bus):
    from core.services.payment_service import PaymentService
    return PaymentService(store, config, audit, event_bus)


@pytest.fixture
def invoice_service(
    store, config, audit, event_bus, currency_service, number_service,
    line_item_service, split_service, object_store, documents,
):
    from core.services.invoice_service import InvoiceService
    return InvoiceService(
        store, config, audit, event_bus,
        currency=currency_service,
        numbers=number_service,
        line_items=line_item_service,
        splits=split_service,
        object_store=object_store,
        documents=documents,
    )


# =============================================================================
# INVOICE HELPERS
# =============================================================================


@pytest.fixture
def make_invoice(as_test_user, invoice_service):
    """Create a draft through the service; keyword overrides go into InvoiceCreate."""
    from datetime import date
    from core.models import InvoiceCreate

    def _make(**overrides):
        data = {
            "client_id": 1,
            "matter_ids": [100],
            "invoice_date": date(2026, 1, 8),
            "due_date": date(2099, 12, 31),
            "invoice_amount": Decimal("1000"),
            "description": "Professional fees",
            "billing_location": "mumbai",
        }
        data.update(overrides)
        return invoice_service.create(InvoiceCreate(**data))

    return _make


@pytest.fixture
def partner_shares(test_user_id, test_user_b_id):
    from core.models import PartnerShareInput
    return [
        PartnerShareInput(partner_user_id=test_user_id, percentage=Decimal("70")),
        PartnerShareInput(partner_user_id=test_user_b_id, percentage=Decimal("30")),
    ]


@pytest.fixture
def finalize(invoice_service, partner_shares):
    """Finalize an invoice with the default 70/30 partner shares and optional splits."""
    from core.models import FinalizeRequest

    def _finalize(invoice_id, splits=None):
        return invoice_service.finalize(
            invoice_id,
            FinalizeRequest(splits=splits or [], partner_shares=partner_shares),
        )

    return _finalize

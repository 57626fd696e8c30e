"""API test fixtures: TestClient over the in-memory store services."""

import pytest
from starlette.testclient import TestClient

from api.app import create_app


# =============================================================================
# SERVICES DICT
# =============================================================================


@pytest.fixture
def services(
    config,
    event_bus,
    invoice_service,
    payment_service,
    split_service,
    currency_service,
    number_service,
):
    return {
        "config": config,
        "event_bus": event_bus,
        "invoice": invoice_service,
        "payment": payment_service,
        "split": split_service,
        "currency": currency_service,
        "number": number_service,
    }


# =============================================================================
# AUTH FIXTURES
# =============================================================================


@pytest.fixture
def resolve_user(test_user_id):
    """Resolver standing in for the host application's session check."""

    def _resolve(request):
        if request.cookies.get("session_token") == "test-token":
            return test_user_id
        return None

    return _resolve


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services, resolve_user):
    """FastAPI app with user context middleware, error handlers, and billing routes."""
    return create_app(services, resolve_user)


@pytest.fixture
def client(app):
    """Authenticated test client."""
    c = TestClient(app, raise_server_exceptions=False)
    c.cookies.set("session_token", "test-token")
    return c


@pytest.fixture
def unauthed_client(app):
    """Unauthenticated test client (no session cookie)."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def invoice_payload():
    return {
        "client_id": 1,
        "matter_ids": [100],
        "invoice_date": "2026-01-08",
        "due_date": "2099-12-31",
        "invoice_amount": "1000",
        "description": "Professional fees",
        "billing_location": "mumbai",
    }


@pytest.fixture
def partner_payload(test_user_id, test_user_b_id):
    return [
        {"partner_user_id": str(test_user_id), "percentage": "70"},
        {"partner_user_id": str(test_user_b_id), "percentage": "30"},
    ]

"""
Application assembly: wire services onto a store and mount the API routes.

The host application owns authentication. It passes a resolve_user callable
that maps a request to the acting user's ID (or None when unauthenticated).
"""

import logging

from fastapi import FastAPI

from api.actions import create_actions_router
from api.base import success_response
from api.data import create_data_router
from api.documents import create_documents_router
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware, UserContextMiddleware, UserResolver
from clients.object_store_client import ObjectStore, S3ObjectStore
from clients.postgres_client import PostgresClient
from clients.rate_client import RateSuggestionClient
from clients.vault_client import get_database_url, get_object_store_config, get_rate_service_config
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.handlers.contact_crossref_handler import (
    ContactDirectory, handle_invoice_finalized, handle_invoice_split,
)
from core.postgres_store import PostgresInvoiceStore
from core.services.currency_service import CurrencyService
from core.services.invoice_number_service import InvoiceNumberService
from core.services.invoice_service import DocumentGenerator, InvoiceService
from core.services.line_item_service import LineItemService
from core.services.payment_service import PaymentService
from core.services.split_service import SplitService
from core.store import InvoiceStore

logger = logging.getLogger(__name__)


def build_services(
    store: InvoiceStore,
    config: BillingConfig | None = None,
    event_bus: EventBus | None = None,
    rate_client: RateSuggestionClient | None = None,
    object_store: ObjectStore | None = None,
    documents: DocumentGenerator | None = None,
    directory: ContactDirectory | None = None,
) -> dict:
    """
    Construct every billing service against one store and one event bus.

    When a contact directory is given, finalized and split invoices are
    cross-referenced onto client contacts after commit.
    """
    config = config or BillingConfig()
    event_bus = event_bus or EventBus()
    audit = AuditLogger()

    if directory is not None:
        event_bus.subscribe("InvoiceFinalized", handle_invoice_finalized(directory))
        event_bus.subscribe("InvoiceSplit", handle_invoice_split(directory))

    currency = CurrencyService(store, config, rate_client)
    numbers = InvoiceNumberService(store, config)
    splits = SplitService(store, config, audit)

    return {
        "config": config,
        "event_bus": event_bus,
        "currency": currency,
        "number": numbers,
        "split": splits,
        "payment": PaymentService(store, config, audit, event_bus),
        "invoice": InvoiceService(
            store, config, audit, event_bus,
            currency=currency,
            numbers=numbers,
            line_items=LineItemService(config, currency),
            splits=splits,
            object_store=object_store,
            documents=documents,
        ),
    }


def services_from_vault(
    config: BillingConfig | None = None,
    documents: DocumentGenerator | None = None,
    directory: ContactDirectory | None = None,
) -> dict:
    """Build services on PostgreSQL, S3 and the rate service, configured from Vault."""
    store = PostgresInvoiceStore(PostgresClient(get_database_url()))
    object_store = S3ObjectStore(**get_object_store_config())
    rate_client = RateSuggestionClient(**get_rate_service_config())
    logger.info("Billing services configured from Vault")

    return build_services(
        store,
        config=config,
        rate_client=rate_client,
        object_store=object_store,
        documents=documents,
        directory=directory,
    )


def create_app(services: dict, resolve_user: UserResolver) -> FastAPI:
    """FastAPI app with user context, error handlers, and the billing routes."""
    app = FastAPI(title="Billing")
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(UserContextMiddleware, resolve_user=resolve_user)
    register_error_handlers(app)

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"}).model_dump(mode="json")

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")
    app.include_router(create_documents_router(services), prefix="/api")

    return app

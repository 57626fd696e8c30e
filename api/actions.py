"""POST /api/actions: unified mutation endpoint."""

from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from core.models import (
    InvoiceCreate, InvoiceUpdate, TimesheetBillingUpdate,
    FinalizeRequest,
    PaymentCreate,
)


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "invoice": InvoiceHandler(services["invoice"]),
        "payment": PaymentHandler(services["payment"]),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}", None)
        result = method(body.data)
        return success_response(result).model_dump(mode="json")

    return router


def _pop_uuid(data: dict, key: str) -> UUID:
    if key not in data:
        raise ValueError(f"'{key}' is required")
    return UUID(str(data.pop(key)))


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class InvoiceHandler:
    ALLOWED_ACTIONS = {"create", "update", "update_timesheet", "finalize", "delete"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        invoice = self.service.create(InvoiceCreate(**data))
        return invoice.model_dump(mode="json")

    def _handle_update(self, data: dict):
        invoice_id = _pop_uuid(data, "id")
        invoice = self.service.update_draft(invoice_id, InvoiceUpdate(**data))
        return invoice.model_dump(mode="json")

    def _handle_update_timesheet(self, data: dict):
        invoice_id = _pop_uuid(data, "id")
        if "timesheet_id" not in data:
            raise ValueError("'timesheet_id' is required")
        timesheet_id = int(data.pop("timesheet_id"))
        invoice = self.service.update_timesheet_billing(
            invoice_id, timesheet_id, TimesheetBillingUpdate(**data)
        )
        return invoice.model_dump(mode="json")

    def _handle_finalize(self, data: dict):
        invoice_id = _pop_uuid(data, "id")
        invoice = self.service.finalize(invoice_id, FinalizeRequest(**data))
        return invoice.model_dump(mode="json")

    def _handle_delete(self, data: dict):
        self.service.delete(_pop_uuid(data, "id"))
        return {"deleted": True}


class PaymentHandler:
    ALLOWED_ACTIONS = {"record"}

    def __init__(self, service):
        self.service = service

    def _handle_record(self, data: dict):
        invoice_id = _pop_uuid(data, "invoice_id")
        payment = self.service.record(invoice_id, PaymentCreate(**data))
        return payment.model_dump(mode="json")

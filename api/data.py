"""GET /api/data: unified read endpoint."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.models import InvoiceFilter, WorkflowStatus


VALID_TYPES = {
    "invoices",
    "splits",
    "payments",
    "invoice_number",
    "currencies",
    "currency_breakdown",
    "supported_currencies",
    "exchange_rate",
    "paid_this_week",
    "fy_summary",
}


def _id_list(value: str | None) -> list[int]:
    if not value:
        return []
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise ValueError(f"Expected comma-separated integer IDs, got '{value}'")


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]
    payment_svc = services["payment"]
    split_svc = services["split"]
    currency_svc = services["currency"]
    number_svc = services["number"]

    # -------------------------------------------------------------------------
    # Convenience routes (must be registered before the generic /data route)
    # -------------------------------------------------------------------------

    @router.get("/data/payments/this-week")
    async def payments_this_week(request: Request):
        week = payment_svc.paid_this_week()
        return success_response(week.model_dump(mode="json")).model_dump(mode="json")

    @router.get("/data/payments/fiscal-year")
    async def payments_fiscal_year(request: Request):
        summary = payment_svc.fiscal_year_summary()
        return success_response(summary.model_dump(mode="json")).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Generic data endpoint
    # -------------------------------------------------------------------------

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        include: str | None = Query(None),
        client_id: int | None = Query(None),
        matter_id: int | None = Query(None),
        status: WorkflowStatus | None = Query(None),
        start_date: date | None = Query(None),
        end_date: date | None = Query(None),
        limit: int = Query(100, ge=1, le=500),
        invoice_date: date | None = Query(None),
        location: str | None = Query(None),
        matter_ids: str | None = Query(None),
        timesheet_ids: str | None = Query(None),
        expense_ids: str | None = Query(None),
        source: str | None = Query(None),
        target: str | None = Query(None),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        includes = set(include.split(",")) if include else set()

        if type == "invoices":
            filters = InvoiceFilter(
                client_id=client_id,
                matter_id=matter_id,
                status=status,
                start_date=start_date,
                end_date=end_date,
                limit=limit,
            )
            return _handle_invoices(invoice_svc, split_svc, payment_svc, id, includes, filters)

        if type == "splits":
            if not id:
                raise ValueError("'splits' type requires 'id' parameter")
            splits = split_svc.list_splits(UUID(id))
            return success_response(
                [s.model_dump(mode="json") for s in splits]
            ).model_dump(mode="json")

        if type == "payments":
            if not id:
                raise ValueError("'payments' type requires 'id' parameter")
            payments = payment_svc.list_for_invoice(UUID(id))
            return success_response(
                [p.model_dump(mode="json") for p in payments]
            ).model_dump(mode="json")

        if type == "invoice_number":
            if invoice_date is None or not location:
                raise ValueError("'invoice_number' type requires 'invoice_date' and 'location' parameters")
            return success_response(
                number_svc.suggest_number(invoice_date, location)
            ).model_dump(mode="json")

        if type == "currencies":
            ids = _id_list(matter_ids)
            if not ids:
                raise ValueError("'currencies' type requires 'matter_ids' parameter")
            detection = currency_svc.detect_currencies(
                ids, _id_list(timesheet_ids), _id_list(expense_ids)
            )
            return success_response(detection.model_dump(mode="json")).model_dump(mode="json")

        if type == "currency_breakdown":
            if not id:
                raise ValueError("'currency_breakdown' type requires 'id' parameter")
            breakdown = invoice_svc.currency_breakdown(UUID(id))
            return success_response(breakdown.model_dump(mode="json")).model_dump(mode="json")

        if type == "supported_currencies":
            return success_response(currency_svc.supported_currencies()).model_dump(mode="json")

        if type == "exchange_rate":
            if not source or not target:
                raise ValueError("'exchange_rate' type requires 'source' and 'target' parameters")
            source, target = source.upper(), target.upper()
            rate = currency_svc.suggest_rate(source, target)
            return success_response(
                {"source": source, "target": target, "rate": str(rate)}
            ).model_dump(mode="json")

        if type == "paid_this_week":
            return await payments_this_week(request)

        if type == "fy_summary":
            return await payments_fiscal_year(request)

    return router


def _handle_invoices(invoice_svc, split_svc, payment_svc, id, includes, filters):
    if id:
        invoice = invoice_svc.get_by_id(UUID(id))

        data = invoice.model_dump(mode="json")
        if "splits" in includes:
            splits = split_svc.list_splits(invoice.id)
            data["splits"] = [s.model_dump(mode="json") for s in splits]
        if "payments" in includes:
            payments = payment_svc.list_for_invoice(invoice.id)
            data["payments"] = [p.model_dump(mode="json") for p in payments]

        return success_response(data).model_dump(mode="json")

    invoices = invoice_svc.list_invoices(filters)
    return success_response(
        [i.model_dump(mode="json") for i in invoices]
    ).model_dump(mode="json")

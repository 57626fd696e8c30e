"""Invoice document routes: signed copy upload and rendered download."""

from uuid import UUID

from fastapi import APIRouter, File, Request, UploadFile
from starlette.responses import Response

from api.base import success_response


def create_documents_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]

    @router.post("/invoices/{invoice_id}/upload")
    async def upload_signed_invoice(request: Request, invoice_id: UUID, file: UploadFile = File(...)):
        content = await file.read()
        invoice = invoice_svc.upload_signed_document(
            invoice_id,
            content,
            file.filename or "",
            file.content_type,
        )
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.get("/invoices/{invoice_id}/document")
    async def download_invoice_document(request: Request, invoice_id: UUID):
        content = invoice_svc.render_document(invoice_id)
        invoice = invoice_svc.get_by_id(invoice_id)

        media_type = invoice_svc.config.document_media_type
        extension = invoice_svc.config.allowed_upload_types.get(media_type, "")
        return Response(
            content=content,
            media_type=media_type,
            headers={
                "Content-Disposition": f'attachment; filename="{invoice.invoice_number}{extension}"',
            },
        )

    return router

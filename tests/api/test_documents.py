"""Tests for the invoice document upload and download routes."""

import pytest

from clients.object_store_client import ObjectStoreError


@pytest.fixture
def finalized(make_invoice, finalize):
    invoice = make_invoice()
    finalize(invoice.id)
    return invoice


class TestUploadSignedInvoice:

    def test_upload(self, client, object_store, finalized, test_user_id):
        response = client.post(
            f"/api/invoices/{finalized.id}/upload",
            files={"file": ("signed.pdf", b"%PDF-1.4 signed", "application/pdf")},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "invoice_uploaded"

        (key, stored), = object_store.objects.items()
        assert key.startswith(f"invoices/{finalized.id}/{test_user_id}-")
        assert stored["content"] == b"%PDF-1.4 signed"
        assert data["uploaded_invoice_url"] == f"https://objects.test/{key}"

    def test_rejects_image(self, client, object_store, finalized):
        response = client.post(
            f"/api/invoices/{finalized.id}/upload",
            files={"file": ("scan.png", b"\x89PNG", "image/png")},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert object_store.objects == {}

    def test_draft_returns_409(self, client, make_invoice):
        draft = make_invoice()

        response = client.post(
            f"/api/invoices/{draft.id}/upload",
            files={"file": ("signed.pdf", b"%PDF", "application/pdf")},
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_STATE"

    def test_storage_failure_returns_502(self, client, object_store, finalized):
        object_store.error = ObjectStoreError("Upload failed: AccessDenied")

        response = client.post(
            f"/api/invoices/{finalized.id}/upload",
            files={"file": ("signed.pdf", b"%PDF", "application/pdf")},
        )

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "UPSTREAM_ERROR"

    def test_missing_file_returns_422(self, client, finalized):
        response = client.post(f"/api/invoices/{finalized.id}/upload")

        assert response.status_code == 422

    def test_unauthenticated_returns_401(self, unauthed_client, finalized):
        response = unauthed_client.post(
            f"/api/invoices/{finalized.id}/upload",
            files={"file": ("signed.pdf", b"%PDF", "application/pdf")},
        )

        assert response.status_code == 401


class TestDownloadInvoiceDocument:

    def test_download(self, client, finalized):
        response = client.get(f"/api/invoices/{finalized.id}/document")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["content-disposition"] == 'attachment; filename="08012026-M.pdf"'
        assert response.content == b"%PDF-1.4 08012026-M"

    def test_draft_returns_409(self, client, make_invoice):
        draft = make_invoice()

        response = client.get(f"/api/invoices/{draft.id}/document")

        assert response.status_code == 409

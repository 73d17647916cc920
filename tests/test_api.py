"""
API tests for the reconciliation service.

Run with: pytest tests/ -v
"""
import time

import pytest
from fastapi.testclient import TestClient

from conftest import ORG
from reconflow.api.main import create_app
from reconflow.api.routers.jobs import format_sse

HEADERS = {"X-Organization-Id": ORG}
PDF = b"%PDF-1.4 test document"

INVOICE = {
    "invoice_number": "INV-001",
    "vendor_name": "Acme Corp",
    "vendor_id": "V-1",
    "amount": 1500,
    "currency": "USD",
    "issue_date": "2024-01-01",
    "due_date": "2024-01-31",
    "description": "Consulting",
}

PAYMENT = {
    "payment_reference": "PAY-001",
    "payer_name": "Acme Corp",
    "payer_id": "P-1",
    "amount": 1500,
    "currency": "USD",
    "payment_date": "2024-01-20",
    "payment_method": "bank_transfer",
    "description": "Payment for INV-001",
}


@pytest.fixture
def client(ledger, storage, registry):
    app = create_app(ledger=ledger, storage=storage, processor_registry=registry)
    with TestClient(app) as client:
        yield client


def wait_for_job(client, job_id):
    for _ in range(250):
        job = client.get(f"/api/jobs/{job_id}", headers=HEADERS).json()
        if job["status"] in ("completed", "failed"):
            return job
        time.sleep(0.02)
    raise AssertionError(f"Job {job_id} did not finish")


class TestRequestHandling:
    """Tests for organization scoping and error mapping."""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["active_jobs"] == 0

    def test_missing_organization_header(self, client):
        response = client.get("/api/invoices")

        assert response.status_code == 400
        assert response.json() == {"detail": "No organization selected"}

    def test_invalid_body(self, client):
        response = client.post("/api/invoices", json={**INVOICE, "amount": -5}, headers=HEADERS)

        assert response.status_code == 400
        body = response.json()
        assert body["detail"] == "Validation failed"
        assert any(error.startswith("amount") for error in body["errors"])

    def test_not_found(self, client):
        response = client.get("/api/invoices/missing", headers=HEADERS)

        assert response.status_code == 404
        assert response.json() == {"detail": "Invoice not found"}

    def test_records_are_scoped_to_organization(self, client):
        invoice = client.post("/api/invoices", json=INVOICE, headers=HEADERS).json()

        response = client.get(f"/api/invoices/{invoice['id']}", headers={"X-Organization-Id": "org-other"})

        assert response.status_code == 404
        assert client.get("/api/invoices", headers={"X-Organization-Id": "org-other"}).json() == []


class TestLedgerEndpoints:
    """Tests for invoices, payments and optimistic updates."""

    def test_create_and_list(self, client):
        created = client.post("/api/invoices", json=INVOICE, headers=HEADERS)
        assert created.status_code == 201
        assert created.json()["status"] == "pending"
        assert created.json()["organization_id"] == ORG

        payment = client.post("/api/payments", json=PAYMENT, headers=HEADERS)
        assert payment.status_code == 201

        assert len(client.get("/api/invoices", headers=HEADERS).json()) == 1
        assert client.get("/api/invoices?status=matched", headers=HEADERS).json() == []
        assert len(client.get("/api/payments", headers=HEADERS).json()) == 1

    def test_patch_with_version(self, client):
        invoice = client.post("/api/invoices", json=INVOICE, headers=HEADERS).json()
        url = f"/api/invoices/{invoice['id']}"

        updated = client.patch(url, json={"status": "disputed", "expected_version": 1}, headers=HEADERS)
        assert updated.status_code == 200
        assert updated.json()["status"] == "disputed"
        assert updated.json()["version"] == 2

        stale = client.patch(url, json={"description": "late", "expected_version": 1}, headers=HEADERS)
        assert stale.status_code == 409

    def test_bulk_import(self, client):
        response = client.post(
            "/api/import/invoices",
            json={"invoices": [INVOICE, {**INVOICE, "invoice_number": "INV-002"}]},
            headers=HEADERS,
        )

        assert response.status_code == 201
        assert response.json()["message"] == "Imported 2 invoices"
        assert len(response.json()["invoices"]) == 2


class TestReconciliationEndpoints:
    """Tests for suggestions, matching, exceptions and dashboard stats."""

    def test_suggest_and_auto_reconcile(self, client):
        client.post("/api/import/invoices", json={"invoices": [INVOICE]}, headers=HEADERS)
        client.post("/api/import/payments", json={"payments": [PAYMENT]}, headers=HEADERS)

        suggestions = client.get("/api/reconciliations/suggestions", headers=HEADERS).json()
        assert len(suggestions) == 1
        assert suggestions[0]["confidence"] == pytest.approx(1.0)

        response = client.post("/api/reconciliations/auto", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["message"] == "Auto-reconciled 1 items"
        reconciliation = response.json()["reconciliations"][0]
        assert reconciliation["matched_by"] == "auto"
        assert reconciliation["match_type"] == "exact"

        invoice = client.get(f"/api/invoices/{reconciliation['invoice_id']}", headers=HEADERS).json()
        assert invoice["status"] == "matched"
        assert invoice["reconciliation_id"] == reconciliation["id"]

        stats = client.get("/api/dashboard/stats", headers=HEADERS).json()
        assert stats["total_reconciled"] == 1
        assert stats["match_rate"] == 100.0
        assert stats["reconciled_amount"] == 1500.0

        again = client.post("/api/reconciliations/auto", json={"min_confidence": 0.5}, headers=HEADERS)
        assert again.json()["message"] == "Auto-reconciled 0 items"

    def test_manual_reconciliation(self, client):
        invoice = client.post("/api/invoices", json=INVOICE, headers=HEADERS).json()
        payment = client.post("/api/payments", json={**PAYMENT, "amount": 1400}, headers=HEADERS).json()

        response = client.post(
            "/api/reconciliations",
            json={"invoice_id": invoice["id"], "payment_id": payment["id"], "notes": "Short paid"},
            headers=HEADERS,
        )

        assert response.status_code == 201
        reconciliation = response.json()
        assert reconciliation["matched_by"] == "manual"
        assert reconciliation["discrepancy_amount"] == -100.0

        approved = client.patch(
            f"/api/reconciliations/{reconciliation['id']}/status", json={"status": "approved"}, headers=HEADERS
        )
        assert approved.json()["status"] == "approved"

    def test_manual_reconciliation_with_unknown_ids(self, client):
        response = client.post(
            "/api/reconciliations", json={"invoice_id": "nope", "payment_id": "nope"}, headers=HEADERS
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Failed to create reconciliation. Check invoice and payment IDs."

    def test_identify_and_resolve_exceptions(self, client):
        client.post("/api/invoices", json=INVOICE, headers=HEADERS)
        client.post("/api/payments", json={**PAYMENT, "amount": 99}, headers=HEADERS)

        identified = client.post("/api/exceptions/identify", headers=HEADERS).json()
        assert identified["message"] == "Identified 2 new exceptions"
        assert {e["type"] for e in identified["exceptions"]} == {"unmatched_invoice", "unmatched_payment"}

        repeat = client.post("/api/exceptions/identify", headers=HEADERS).json()
        assert repeat["message"] == "Identified 0 new exceptions"

        exception_id = identified["exceptions"][0]["id"]
        resolved = client.patch(
            f"/api/exceptions/{exception_id}/status",
            json={"status": "resolved", "resolved_by": "alice"},
            headers=HEADERS,
        ).json()
        assert resolved["status"] == "resolved"
        assert resolved["resolved_by"] == "alice"
        assert resolved["resolved_at"] is not None
        assert len(client.get("/api/exceptions?status=open", headers=HEADERS).json()) == 1


class TestDocumentEndpoints:
    """Tests for uploads, workflows and background jobs."""

    def test_process_upload_synchronously(self, client, ledger):
        response = client.post(
            "/api/uploads/process",
            files={"file": ("pay.pdf", PDF, "application/pdf")},
            data={"document_type": "payment"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["execution"]["workflow_id"] == "payment-processing"
        assert body["execution"]["output"]["saved_record_id"] == ledger.list_payments(ORG)[0].id

        executions = client.get("/api/workflows/executions").json()
        assert executions[0]["id"] == body["execution"]["id"]

    def test_store_then_process(self, client, ledger):
        stored = client.post(
            "/api/uploads", files={"file": ("inv.pdf", PDF, "application/pdf")}, headers=HEADERS
        ).json()
        assert stored["file_key"] == "uploads/org-test/inv.pdf"
        assert client.get("/api/uploads", headers=HEADERS).json()["keys"] == ["uploads/org-test/inv.pdf"]

        response = client.post(
            f"/api/uploads/{stored['file_key']}/process", json={"document_type": "invoice"}, headers=HEADERS
        )

        assert response.json()["success"] is True
        assert ledger.list_invoices(ORG)[0].invoice_number == "INV-001"

    def test_stored_file_of_another_organization(self, client, ledger):
        other_headers = {"X-Organization-Id": "org-other"}
        stored = client.post(
            "/api/uploads", files={"file": ("secret.pdf", PDF, "application/pdf")}, headers=other_headers
        ).json()
        assert stored["file_key"] == "uploads/org-other/secret.pdf"

        response = client.post(f"/api/uploads/{stored['file_key']}/process", json={}, headers=HEADERS)
        escaped = client.post(
            "/api/uploads/uploads/org-test/../org-other/secret.pdf/process", json={}, headers=HEADERS
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "File not found: uploads/org-other/secret.pdf"
        assert escaped.status_code == 404
        assert ledger.list_invoices(ORG) == []

    def test_process_missing_stored_file(self, client):
        presigned = client.post("/api/uploads/presign", json={"file_name": "later.pdf"}, headers=HEADERS).json()
        assert presigned["file_key"].startswith("uploads/org-test/")

        response = client.post(f"/api/uploads/{presigned['file_key']}/process", json={}, headers=HEADERS)

        assert response.status_code == 404

    def test_empty_upload_rejected(self, client):
        response = client.post(
            "/api/jobs/upload", files={"file": ("empty.pdf", b"", "application/pdf")}, headers=HEADERS
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "File empty.pdf is empty"

    def test_background_job(self, client):
        response = client.post(
            "/api/jobs/upload",
            files={"file": ("pay.pdf", PDF, "application/pdf")},
            data={"document_type": "payment"},
            headers=HEADERS,
        )
        assert response.status_code == 200
        job_id = response.json()["job_id"]

        job = wait_for_job(client, job_id)
        assert job["status"] == "completed"
        assert job["progress"] == 100
        assert job["result"]["document_type"] == "payment"

        assert client.get(f"/api/jobs/{job_id}/file-url", headers=HEADERS).json()["url"].startswith("file://")
        assert [j["id"] for j in client.get("/api/jobs", headers=HEADERS).json()] == [job_id]
        assert client.get("/api/jobs/stats/summary", headers=HEADERS).json()["completed_jobs"] == 1

        retry = client.post(f"/api/jobs/{job_id}/retry", headers=HEADERS)
        assert retry.status_code == 400
        assert retry.json()["detail"] == "Can only retry failed jobs"

    def test_bulk_upload(self, client):
        response = client.post(
            "/api/jobs/upload/bulk",
            files=[
                ("files", ("a.pdf", PDF, "application/pdf")),
                ("files", ("b.pdf", PDF, "application/pdf")),
            ],
            data={"document_type": "payment"},
            headers=HEADERS,
        )

        jobs = response.json()["jobs"]
        assert len(jobs) == 2
        assert all(wait_for_job(client, job["id"])["status"] == "completed" for job in jobs)

    def test_unknown_job(self, client):
        assert client.get("/api/jobs/missing", headers=HEADERS).status_code == 404
        assert client.post("/api/jobs/missing/retry", headers=HEADERS).json() == {"detail": "Job not found"}

    def test_catalog_endpoints(self, client):
        workflows = client.get("/api/workflows").json()
        assert [w["id"] for w in workflows] == ["invoice-processing", "payment-processing", "remittance-processing"]
        assert client.get("/api/workflows/nope").json() == {"detail": "Workflow not found: nope"}
        assert client.get("/api/workflows/executions/nope").status_code == 404

        processors = client.get("/api/processors").json()
        assert processors[0]["id"] == "stub"
        assert processors[0]["supported_types"] == ["invoice", "payment", "remittance"]

    def test_remittances(self, client):
        listing = client.get("/api/remittances", headers=HEADERS).json()
        assert listing == {"remittances": [], "total": 0, "limit": 50, "offset": 0}
        assert client.get("/api/remittances/missing/file-url", headers=HEADERS).status_code == 404


def test_format_sse():
    assert format_sse("job_updated", '{"progress": 10}') == 'event: job_updated\ndata: {"progress": 10}\n\n'

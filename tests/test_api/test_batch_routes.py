"""API tests for SHA batch routes.
"""

import pytest

pytestmark = pytest.mark.api


@pytest.fixture
def claim_ids(api_client, reception_headers, claim_payload):
    ids = []
    for op_number in ("OP-A", "OP-B"):
        response = api_client.post(
            "/api/v1/claims",
            json={**claim_payload, "op_number": op_number},
            headers=reception_headers,
        )
        ids.append(response.json()["data"]["id"])
    return ids


@pytest.fixture
def batch(api_client, manager_headers, claim_ids):
    response = api_client.post(
        "/api/v1/sha-batches",
        json={"batch_type": "custom", "claim_ids": claim_ids},
        headers=manager_headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_create_batch(batch):
    """POST should create a draft batch with totals."""
    assert batch["batch_number"].startswith("SHA-BATCH-")
    assert batch["status"] == "draft"
    assert batch["total_claims"] == 2
    assert batch["total_amount"] == "4000.00"


def test_empty_selection_is_400(api_client, manager_headers):
    """No eligible claims should answer 400."""
    response = api_client.post(
        "/api/v1/sha-batches", json={"batch_type": "weekly"}, headers=manager_headers
    )

    assert response.status_code == 400
    assert response.json()["error"]["type"] == "NoEligibleClaimsError"


def test_inverted_range_is_422(api_client, manager_headers):
    """date_from after date_to is rejected by request validation."""
    response = api_client.post(
        "/api/v1/sha-batches",
        json={"batch_type": "custom", "date_from": "2025-11-10", "date_to": "2025-11-01"},
        headers=manager_headers,
    )

    assert response.status_code == 422


def test_receptionist_cannot_create_batch(api_client, reception_headers, claim_ids):
    response = api_client.post(
        "/api/v1/sha-batches",
        json={"batch_type": "custom", "claim_ids": claim_ids},
        headers=reception_headers,
    )

    assert response.status_code == 403


def test_generate_print_and_submit(api_client, manager_headers, batch, fake_sha):
    """A batch is invoiced, printed and submitted in one SHA call."""
    generated = api_client.post(
        f"/api/v1/sha-batches/{batch['id']}/generate-invoices", headers=manager_headers
    )
    assert generated.status_code == 200
    assert len(generated.json()["data"]["succeeded"]) == 2
    assert generated.json()["data"]["failed"] == {}

    printed = api_client.patch(
        f"/api/v1/sha-batches/{batch['id']}/mark-printed", headers=manager_headers
    )
    assert printed.json()["data"]["invoices_printed"] is True

    submitted = api_client.patch(
        f"/api/v1/sha-batches/{batch['id']}/submit", headers=manager_headers
    )
    assert submitted.status_code == 200, submitted.text
    assert submitted.json()["data"]["sha_reference"] == "SHA-B-0001"
    assert len(submitted.json()["data"]["claim_ids"]) == 2
    assert len(fake_sha.submissions) == 1

    detail = api_client.get(f"/api/v1/sha-batches/{batch['id']}", headers=manager_headers)
    data = detail.json()["data"]
    assert data["status"] == "submitted"
    assert {m["status"] for m in data["claims"]} == {"submitted"}
    assert {m["invoice_status"] for m in data["claims"]} == {"submitted"}

    deleted = api_client.delete(f"/api/v1/sha-batches/{batch['id']}", headers=manager_headers)
    assert deleted.status_code == 400


def test_submit_without_invoices_is_refused(api_client, manager_headers, batch, fake_sha):
    """Every member needs an invoice before the batch goes out."""
    response = api_client.patch(
        f"/api/v1/sha-batches/{batch['id']}/submit", headers=manager_headers
    )

    assert response.status_code == 400
    assert response.json()["error"]["type"] == "InvoiceNotReadyError"
    assert fake_sha.submissions == []


def test_delete_releases_claims(api_client, manager_headers, batch, claim_ids):
    """DELETE should remove a draft batch and free its claims."""
    response = api_client.delete(f"/api/v1/sha-batches/{batch['id']}", headers=manager_headers)
    assert response.status_code == 200
    assert response.json()["data"] is None

    claim = api_client.get(f"/api/v1/claims/{claim_ids[0]}", headers=manager_headers)
    assert claim.json()["data"]["batch_id"] is None

    missing = api_client.get(f"/api/v1/sha-batches/{batch['id']}", headers=manager_headers)
    assert missing.status_code == 404


def test_list_and_statistics(api_client, reception_headers, batch):
    listed = api_client.get("/api/v1/sha-batches", headers=reception_headers)
    assert listed.json()["data"]["total"] == 1

    stats = api_client.get("/api/v1/sha-batches/stats/summary", headers=reception_headers)
    assert stats.status_code == 200
    assert stats.json()["data"]["total_batches"] == 1
    assert stats.json()["data"]["draft"] == 1

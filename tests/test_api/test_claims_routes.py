"""API tests for claim routes.
Covers creation, role checks, status changes and the error envelope.
"""

from uuid import uuid4

import pytest

pytestmark = pytest.mark.api


def _create(api_client, headers, payload):
    response = api_client.post("/api/v1/claims", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_create_claim_returns_envelope(api_client, reception_headers, claim_payload):
    """POST /api/v1/claims should create a ready claim with numbered items."""
    response = api_client.post("/api/v1/claims", json=claim_payload, headers=reception_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"].startswith("Claim CLM-")
    claim = body["data"]
    assert claim["status"] == "ready_to_submit"
    assert claim["claim_amount"] == "2000.00"
    assert claim["created_by"] == "reception-01"
    assert [item["line_number"] for item in claim["items"]] == [1, 2]


def test_create_claim_as_draft(api_client, reception_headers, claim_payload):
    """as_draft should keep the claim in draft."""
    claim = _create(api_client, reception_headers, {**claim_payload, "as_draft": True})

    assert claim["status"] == "draft"


def test_create_claim_requires_token(api_client, claim_payload):
    """Missing bearer token should answer 401 in the error envelope."""
    response = api_client.post("/api/v1/claims", json=claim_payload)

    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Not authenticated"
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_invalid_token_rejected(api_client, claim_payload):
    """A token signed with another key should answer 401."""
    response = api_client.get(
        "/api/v1/claims", headers={"Authorization": "Bearer not.a.token"}
    )

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid token"


def test_business_rule_errors_are_400(api_client, reception_headers, claim_payload):
    """Claim data failing validation should answer 400 with every error listed."""
    payload = {**claim_payload, "primary_diagnosis_code": "not-a-code"}

    response = api_client.post("/api/v1/claims", json=payload, headers=reception_headers)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["type"] == "ValidationError"
    assert any("primary_diagnosis_code" in e for e in body["error"]["details"]["errors"])


def test_malformed_request_is_422(api_client, reception_headers, claim_payload):
    """A request missing required fields should answer 422 in the error envelope."""
    payload = dict(claim_payload)
    del payload["op_number"]

    response = api_client.post("/api/v1/claims", json=payload, headers=reception_headers)

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["error"]["type"] == "RequestValidationError"
    assert body["error"]["details"]["errors"]


def test_missing_claim_is_404(api_client, reception_headers):
    """GET /api/v1/claims/{id} should answer 404 for an unknown claim."""
    response = api_client.get(f"/api/v1/claims/{uuid4()}", headers=reception_headers)

    assert response.status_code == 404
    assert response.json()["error"]["type"] == "ClaimNotFoundError"


def test_list_claims_filters_by_status(api_client, reception_headers, claim_payload):
    """GET /api/v1/claims should page and filter by status."""
    _create(api_client, reception_headers, claim_payload)
    _create(api_client, reception_headers, {**claim_payload, "as_draft": True})

    response = api_client.get(
        "/api/v1/claims", params={"status": "draft"}, headers=reception_headers
    )

    assert response.status_code == 200
    page = response.json()["data"]
    assert page["total"] == 1
    assert page["items"][0]["status"] == "draft"
    assert page["page"] == 1


def test_receptionist_cannot_change_status(api_client, reception_headers, claim_payload):
    """PATCH status is limited to clinical staff and managers."""
    claim = _create(api_client, reception_headers, {**claim_payload, "as_draft": True})

    response = api_client.patch(
        f"/api/v1/claims/{claim['id']}/status",
        json={"status": "ready_to_submit"},
        headers=reception_headers,
    )

    assert response.status_code == 403
    assert response.json()["success"] is False


def test_status_change_and_audit(
    api_client, reception_headers, clinical_headers, claim_payload
):
    """A clinical officer can move a draft forward; the audit trail records it."""
    claim = _create(api_client, reception_headers, {**claim_payload, "as_draft": True})

    response = api_client.patch(
        f"/api/v1/claims/{claim['id']}/status",
        json={"status": "ready_to_submit", "reason": "Clinical notes complete"},
        headers=clinical_headers,
    )

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "ready_to_submit"
    assert response.json()["message"].endswith("Ready to Submit")

    audit = api_client.get(f"/api/v1/claims/{claim['id']}/audit", headers=clinical_headers)
    actions = [entry["action"] for entry in audit.json()["data"]]
    assert actions == ["CLAIM_CREATED", "CLAIM_STATUS_CHANGED"]


def test_reserved_transition_refused(
    api_client, reception_headers, clinical_headers, claim_payload
):
    """invoice_ready can only be reached by generating the invoice."""
    claim = _create(api_client, reception_headers, claim_payload)

    response = api_client.patch(
        f"/api/v1/claims/{claim['id']}/status",
        json={"status": "invoice_ready"},
        headers=clinical_headers,
    )

    assert response.status_code == 400
    assert response.json()["error"]["type"] == "InvalidTransitionError"

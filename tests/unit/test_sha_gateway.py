"""
Unit tests for the SHA API gateway.
"""

from decimal import Decimal

import httpx
import pytest

from sha_claims.gateways.base import GatewayConfig, ProviderHealth, ProviderStatus
from sha_claims.gateways.sha_gateway import (
    RemoteClaimStatus,
    ShaGateway,
    extract_claim_references,
    extract_reference,
)


def gateway_for(handler) -> ShaGateway:
    client = httpx.AsyncClient(
        base_url="https://sha.test/api", transport=httpx.MockTransport(handler)
    )
    return ShaGateway(
        GatewayConfig(
            base_url="https://sha.test/api",
            api_key="secret-key",
            provider_code="CLINIC001",
            timeout_seconds=5.0,
        ),
        client=client,
    )


@pytest.mark.unit
class TestResponseParsing:
    def test_reference_from_data_envelope(self):
        assert extract_reference({"data": {"reference": "SHA-1"}}) == "SHA-1"

    def test_reference_from_top_level(self):
        assert extract_reference({"claim_reference": "SHA-2"}) == "SHA-2"
        assert extract_reference({"batch_reference": "SHA-B-3"}) == "SHA-B-3"

    def test_missing_reference(self):
        assert extract_reference({"status": "ok"}) is None
        assert extract_reference(None) is None
        assert extract_reference(["not", "a", "dict"]) is None

    def test_claim_references_of_batch(self):
        body = {
            "data": {
                "batch_reference": "SHA-B-1",
                "claims": [
                    {"claim_number": "CLM-1", "reference": "R-1"},
                    {"claim_number": "CLM-2"},
                    {"reference": "orphan"},
                ],
            }
        }
        assert extract_claim_references(body) == {"CLM-1": "R-1"}

    def test_remote_status(self):
        remote = RemoteClaimStatus.from_body(
            {"data": {"status": "APPROVED", "reference": "R-1", "approved_amount": "1750.50"}}
        )
        assert remote.status == "approved"
        assert remote.reference == "R-1"
        assert remote.approved_amount == Decimal("1750.50")

    def test_remote_status_with_bad_amount(self):
        remote = RemoteClaimStatus.from_body({"status": "rejected", "approved_amount": "n/a"})
        assert remote.status == "rejected"
        assert remote.approved_amount is None

    def test_remote_status_absent(self):
        assert RemoteClaimStatus.from_body({"data": {}}) is None


@pytest.mark.unit
class TestShaGatewayRequests:
    @pytest.mark.asyncio
    async def test_submit_sends_auth_headers(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"reference": "SHA-9"}})

        gateway = gateway_for(handler)
        result = await gateway.submit_claim({"claim_number": "CLM-1"})

        assert result.success is True
        assert result.status_code == 200
        assert extract_reference(result.data) == "SHA-9"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/api/claims/submit"
        assert request.headers["Authorization"] == "Bearer secret-key"
        assert request.headers["X-Provider-Code"] == "CLINIC001"

    @pytest.mark.asyncio
    async def test_status_endpoints(self):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json={"status": "paid"})

        gateway = gateway_for(handler)
        await gateway.get_claim_status("R-1")
        await gateway.get_batch_status("SHA-B-1")
        await gateway.submit_batch({"claims": []})

        assert paths == [
            "/api/claims/status/R-1",
            "/api/claims/batch-status/SHA-B-1",
            "/api/claims/batch-submit",
        ]

    @pytest.mark.asyncio
    async def test_remote_error_is_failed_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"message": "Invalid member number"})

        result = await gateway_for(handler).submit_claim({})

        assert result.success is False
        assert result.status_code == 422
        assert "Invalid member number" in result.error
        assert result.data == {"message": "Invalid member number"}

    @pytest.mark.asyncio
    async def test_not_found(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "unknown claim"})

        result = await gateway_for(handler).get_claim_status("CLM-404")

        assert result.success is False
        assert result.is_not_found is True

    @pytest.mark.asyncio
    async def test_timeout_is_failed_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        result = await gateway_for(handler).submit_claim({})

        assert result.success is False
        assert result.is_timeout is True
        assert result.status_code is None

    @pytest.mark.asyncio
    async def test_network_error_is_failed_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await gateway_for(handler).submit_claim({})

        assert result.success is False
        assert result.is_timeout is False
        assert "unreachable" in result.error

    @pytest.mark.asyncio
    async def test_credentials_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "bad key"})

        result = await gateway_for(handler).submit_claim({})

        assert result.success is False
        assert result.status_code == 401
        assert "credentials" in result.error

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad Gateway")

        result = await gateway_for(handler).submit_claim({})

        assert result.success is False
        assert result.data == {"raw": "Bad Gateway"}


@pytest.mark.unit
class TestGatewayHealth:
    @pytest.mark.asyncio
    async def test_health_degrades_then_recovers(self):
        responses = iter([503, 503, 503, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(next(responses), json={})

        gateway = gateway_for(handler)
        await gateway.get_claim_status("R-1")
        assert gateway.get_status().status == ProviderStatus.DEGRADED

        await gateway.get_claim_status("R-1")
        await gateway.get_claim_status("R-1")
        assert gateway.get_status().status == ProviderStatus.UNHEALTHY
        assert gateway.get_status().consecutive_failures == 3

        await gateway.get_claim_status("R-1")
        assert gateway.get_status().status == ProviderStatus.HEALTHY
        assert gateway.get_status().error_count == 3
        assert gateway.get_status().request_count == 4

    def test_fresh_health(self):
        health = ProviderHealth()
        assert health.status == ProviderStatus.HEALTHY
        assert health.request_count == 0

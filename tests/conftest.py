"""
Pytest Configuration and Fixtures.
Shared test fixtures for all test modules.

Each test gets its own SQLite file so services can open as many sessions as
they need; the SHA API is replaced by an httpx.MockTransport.
"""

import json
import os
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

# Settings are read on first import of the application package
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-sha-claims-suite-0123456789"
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SHA_API_URL"] = "https://sha.test/api"
os.environ["SHA_API_KEY"] = "test-api-key"
os.environ["LOG_LEVEL"] = "WARNING"

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from sha_claims.api.config import Settings
from sha_claims.core.enums import BatchType, UserRole
from sha_claims.db.connection import create_session_maker
from sha_claims.gateways.sha_gateway import ShaGateway
from sha_claims.models import Base
from sha_claims.schemas.claim import ClaimCreate
from sha_claims.services.container import build_container
from sha_claims.services.events import EventBus
from sha_claims.services.workflow_engine import InMemoryAutomationScheduler
from sha_claims.utils.auth import create_access_token


class FakeShaApi:
    """
    In-memory stand-in for the SHA claims API.

    Submissions answer with a reference derived from the claim number (suffixed
    with the round when a claim comes back); status lookups answer from
    `claim_statuses` / `batch_statuses` or 404.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.claim_statuses: dict[str, dict[str, Any]] = {}
        self.batch_statuses: dict[str, dict[str, Any]] = {}
        self.submit_error: Optional[int] = None
        self.timeout = False
        self.crash = False
        self.batch_count = 0
        self.issued: dict[str, int] = {}

    @property
    def submissions(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    def reference_for(self, claim_number: str) -> str:
        count = self.issued[claim_number] = self.issued.get(claim_number, 0) + 1
        if count == 1:
            return f"REF-{claim_number}"
        return f"REF-{claim_number}-R{count}"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST":
            if self.crash:
                raise RuntimeError("worker stopped before the response arrived")
            if self.timeout:
                raise httpx.ReadTimeout("read timed out", request=request)
            if self.submit_error is not None:
                return httpx.Response(
                    self.submit_error, json={"message": "Member number not recognised"}
                )
            payload = json.loads(request.content)
            if path.endswith("/claims/batch-submit"):
                self.batch_count += 1
                return httpx.Response(
                    200,
                    json={
                        "data": {
                            "batch_reference": f"SHA-B-{self.batch_count:04d}",
                            "claims": [
                                {
                                    "claim_number": c["claim_number"],
                                    "reference": self.reference_for(c["claim_number"]),
                                }
                                for c in payload["claims"]
                            ],
                        }
                    },
                )
            return httpx.Response(
                200,
                json={"data": {"reference": self.reference_for(payload["claim_number"])}},
            )

        key = path.rsplit("/", 1)[-1]
        table = self.batch_statuses if "/batch-status/" in path else self.claim_statuses
        if key not in table:
            return httpx.Response(404, json={"message": "Claim not found"})
        return httpx.Response(200, json=table[key])


def build_claim_data(**overrides: Any) -> ClaimCreate:
    """Valid outpatient claim: consultation 1500.00 + 2 x 250.00 medication."""
    data: dict[str, Any] = {
        "patient_id": uuid4(),
        "op_number": "OP-2025-0042",
        "member_number": "123456789",
        "patient_name": "Achieng Otieno",
        "visit_date": date.today() - timedelta(days=1),
        "primary_diagnosis_code": "J06.9",
        "primary_diagnosis_description": "Acute upper respiratory infection",
        "items": [
            {
                "service_type": "consultation",
                "service_code": "CONS-01",
                "description": "Outpatient consultation",
                "quantity": 1,
                "unit_price": Decimal("1500.00"),
            },
            {
                "service_type": "medication",
                "service_code": "MED-AMOX",
                "description": "Amoxicillin 500mg",
                "quantity": 2,
                "unit_price": Decimal("250.00"),
            },
        ],
    }
    data.update(overrides)
    return ClaimCreate.model_validate(data)


def auth_headers(*roles: UserRole, sub: str = "user-001") -> dict[str, str]:
    token = create_access_token(
        {"sub": sub, "name": "Test User", "roles": [role.value for role in roles]}
    )
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        JWT_SECRET_KEY="test-secret-key-for-sha-claims-suite-0123456789",
        ENVIRONMENT="testing",
        SHA_API_URL="https://sha.test/api",
        SHA_API_KEY="test-api-key",
        SHA_PROVIDER_CODE="CLINIC001",
    )


@pytest.fixture
def database_url(tmp_path) -> str:
    """Fresh SQLite file with every table created."""
    path = tmp_path / "sha_claims.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()
    return f"sqlite+aiosqlite:///{path}"


@pytest_asyncio.fixture
async def session_factory(database_url):
    engine = create_async_engine(database_url, poolclass=NullPool)
    yield create_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def fake_sha() -> FakeShaApi:
    return FakeShaApi()


@pytest.fixture
def gateway(settings, fake_sha) -> ShaGateway:
    client = httpx.AsyncClient(
        base_url=settings.SHA_API_URL, transport=httpx.MockTransport(fake_sha.handler)
    )
    return ShaGateway.from_settings(settings, client=client)


@pytest.fixture
def scheduler() -> InMemoryAutomationScheduler:
    return InMemoryAutomationScheduler()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def published(event_bus) -> list:
    """Every event published on the bus, in order."""
    seen: list = []
    for name in (
        "claim.created",
        "claim.status_changed",
        "invoice.generated",
        "invoice.locked",
        "claim.submitted",
        "submission.failed",
        "batch.submitted",
        "workflow.completed",
        "workflow.failed",
    ):
        event_bus.subscribe(name, seen.append)
    return seen


@pytest_asyncio.fixture
async def container(session_factory, settings, scheduler, gateway, event_bus):
    container = build_container(
        session_factory, settings, scheduler, gateway=gateway, event_bus=event_bus
    )
    yield container
    await container.close()


# =============================================================================
# Domain helpers
# =============================================================================


@pytest.fixture
def claim_data():
    """Factory for valid ClaimCreate payloads."""
    return build_claim_data


@pytest.fixture
def create_claim(container):
    async def _create(created_by: str = "reception-01", **overrides: Any):
        return await container.claims.create_claim(build_claim_data(**overrides), created_by)

    return _create


@pytest.fixture
def invoiced_claim(container, create_claim):
    """Factory for a claim with its invoice generated (claim is invoice_ready)."""

    async def _create(**overrides: Any):
        claim = await create_claim(**overrides)
        invoice = await container.invoices.generate_invoice(claim.id, "manager-01")
        return await container.claims.get_claim(claim.id), invoice

    return _create


@pytest.fixture
def invoiced_batch(container, create_claim):
    """Factory for a custom batch of ready claims whose invoices were then generated."""

    async def _create(size: int = 2, claims: Optional[list] = None):
        claims = claims or [await create_claim() for _ in range(size)]
        batch = await container.batches.create_batch(
            BatchType.CUSTOM, "manager-01", claim_ids=[c.id for c in claims]
        )
        await container.batches.generate_invoices_for_batch(batch.id, "manager-01")
        return batch, [await container.claims.get_claim(c.id) for c in claims]

    return _create


# =============================================================================
# API
# =============================================================================


@pytest.fixture
def api_client(database_url, settings, gateway, scheduler):
    """TestClient with a container bound to the per-test database."""
    from fastapi.testclient import TestClient

    from sha_claims.api.main import app

    engine = create_async_engine(database_url, poolclass=NullPool)
    app.state.container = build_container(
        create_session_maker(engine), settings, scheduler, gateway=gateway
    )
    with TestClient(app) as client:
        yield client
    app.state.container = None


@pytest.fixture
def manager_headers() -> dict[str, str]:
    return auth_headers(UserRole.CLAIMS_MANAGER, sub="manager-01")


@pytest.fixture
def clinical_headers() -> dict[str, str]:
    return auth_headers(UserRole.CLINICAL_OFFICER, sub="clinician-01")


@pytest.fixture
def reception_headers() -> dict[str, str]:
    return auth_headers(UserRole.RECEPTIONIST, sub="reception-01")


@pytest.fixture
def claim_payload() -> dict[str, Any]:
    """JSON body for POST /api/v1/claims."""
    return build_claim_data().model_dump(mode="json", exclude={"as_draft"})

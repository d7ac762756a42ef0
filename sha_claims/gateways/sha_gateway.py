"""
SHA (national insurer) API Gateway.

Endpoints:
- POST /claims/submit
- POST /claims/batch-submit
- GET  /claims/status/{reference}
- GET  /claims/batch-status/{reference}

Every request carries `Authorization: Bearer <api key>` and `X-Provider-Code`.
Timeouts, network errors and non-2xx answers are returned as failed results.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from sha_claims.api.config import Settings
from sha_claims.gateways.base import (
    BaseGateway,
    GatewayConfig,
    GatewayError,
    GatewayResult,
    ProviderAuthenticationError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)

REFERENCE_KEYS = ("reference", "claim_reference", "batch_reference")


def body_sections(body: Any) -> list[dict[str, Any]]:
    """Top level of a response body plus its `data` envelope, when present."""
    if not isinstance(body, dict):
        return []
    sections = [body]
    if isinstance(body.get("data"), dict):
        sections.insert(0, body["data"])
    return sections


def extract_reference(body: Any) -> Optional[str]:
    """Insurer reference from a submission response."""
    for section in body_sections(body):
        for key in REFERENCE_KEYS:
            if section.get(key):
                return str(section[key])
    return None


def extract_claim_references(body: Any) -> dict[str, str]:
    """Per-claim references of a batch response, keyed by claim number."""
    references: dict[str, str] = {}
    for section in body_sections(body):
        for entry in section.get("claims") or []:
            if not isinstance(entry, dict) or not entry.get("claim_number"):
                continue
            reference = extract_reference(entry)
            if reference:
                references[str(entry["claim_number"])] = reference
    return references


@dataclass
class RemoteClaimStatus:
    """Normalized claim status reported by the insurer."""

    status: str
    reference: Optional[str] = None
    approved_amount: Optional[Decimal] = None
    rejection_reason: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Any) -> Optional["RemoteClaimStatus"]:
        for section in body_sections(body):
            status = section.get("status")
            if not status:
                continue
            amount = section.get("approved_amount")
            try:
                approved = Decimal(str(amount)) if amount is not None else None
            except InvalidOperation:
                approved = None
            return cls(
                status=str(status).lower(),
                reference=extract_reference(section),
                approved_amount=approved,
                rejection_reason=section.get("rejection_reason"),
                raw=body,
            )
        return None


class ShaGateway(BaseGateway):
    """
    httpx client for the SHA claims API.

    The AsyncClient is injectable so tests can pass one built on
    httpx.MockTransport.
    """

    def __init__(self, config: GatewayConfig, client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, client: Optional[httpx.AsyncClient] = None
    ) -> "ShaGateway":
        return cls(
            GatewayConfig(
                base_url=settings.SHA_API_URL,
                api_key=settings.SHA_API_KEY,
                provider_code=settings.SHA_PROVIDER_CODE,
                timeout_seconds=settings.SHA_TIMEOUT_SECONDS,
            ),
            client=client,
        )

    @property
    def gateway_name(self) -> str:
        return "SHA"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "X-Provider-Code": self.config.provider_code,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self, method: str, path: str, payload: Optional[dict[str, Any]] = None
    ) -> tuple[int, Any]:
        try:
            response = await self._client.request(
                method,
                path,
                json=payload,
                headers=self._headers(),
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"SHA API timed out after {self.config.timeout_seconds}s", original_error=e
            ) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"SHA API unreachable: {e}", original_error=e) from e

        try:
            body = response.json() if response.content else None
        except ValueError:
            body = {"raw": response.text}

        if response.status_code in (401, 403):
            raise ProviderAuthenticationError(
                "SHA API rejected the provider credentials",
                status_code=response.status_code,
                response=body,
            )
        if response.is_error:
            message = None
            for section in body_sections(body):
                message = section.get("message") or section.get("error")
                if message:
                    break
            raise GatewayError(
                f"SHA API returned {response.status_code}: {message or response.reason_phrase}",
                status_code=response.status_code,
                response=body,
            )
        return response.status_code, body

    async def submit_claim(self, payload: dict[str, Any]) -> GatewayResult[Any]:
        return await self._execute("submit_claim", self._request("POST", "/claims/submit", payload))

    async def submit_batch(self, payload: dict[str, Any]) -> GatewayResult[Any]:
        return await self._execute(
            "submit_batch", self._request("POST", "/claims/batch-submit", payload)
        )

    async def get_claim_status(self, reference: str) -> GatewayResult[Any]:
        return await self._execute(
            "get_claim_status", self._request("GET", f"/claims/status/{reference}")
        )

    async def get_batch_status(self, reference: str) -> GatewayResult[Any]:
        return await self._execute(
            "get_batch_status", self._request("GET", f"/claims/batch-status/{reference}")
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
        await super().close()

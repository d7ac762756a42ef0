"""
Base Gateway for external HTTP services.

A gateway call never raises for remote trouble: timeouts, network errors and
non-2xx answers come back as a failed GatewayResult so callers can record the
outcome and carry on. Calls are never retried automatically; the caller decides.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

TResponse = TypeVar("TResponse")


class ProviderStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[Any] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response = response
        self.original_error = original_error


class ProviderUnavailableError(GatewayError):
    """Raised when the remote service cannot be reached."""

    pass


class ProviderTimeoutError(GatewayError):
    """Raised when a remote request times out."""

    pass


class ProviderAuthenticationError(GatewayError):
    """Raised when the remote service refuses our credentials."""

    pass


@dataclass
class GatewayConfig:
    """Configuration for a gateway instance."""

    base_url: str
    api_key: str = ""
    provider_code: str = ""
    timeout_seconds: float = 30.0
    degraded_after_failures: int = 3


@dataclass
class GatewayResult(Generic[TResponse]):
    """Result wrapper for gateway responses."""

    success: bool
    data: Optional[TResponse] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    latency_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_timeout(self) -> bool:
        return bool(self.metadata.get("timeout"))


@dataclass
class ProviderHealth:
    """Health status for the remote service, derived from recent calls."""

    status: ProviderStatus = ProviderStatus.HEALTHY
    last_check: Optional[datetime] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    avg_latency_ms: float = 0.0
    request_count: int = 0
    error_count: int = 0

    def record_success(self, latency_ms: float) -> None:
        self.consecutive_failures = 0
        self.request_count += 1
        self.last_check = datetime.now(timezone.utc)
        if self.request_count == 1:
            self.avg_latency_ms = latency_ms
        else:
            self.avg_latency_ms = self.avg_latency_ms * 0.9 + latency_ms * 0.1
        self.status = ProviderStatus.HEALTHY

    def record_failure(self, error: str, degraded_after: int) -> None:
        self.consecutive_failures += 1
        self.error_count += 1
        self.request_count += 1
        self.last_error = error
        self.last_check = datetime.now(timezone.utc)
        if self.consecutive_failures >= degraded_after:
            self.status = ProviderStatus.UNHEALTHY
        else:
            self.status = ProviderStatus.DEGRADED


class BaseGateway(ABC):
    """
    Abstract base class for HTTP gateways.

    Implements:
    - Conversion of GatewayError into failed results
    - Health monitoring
    - Latency tracking
    """

    def __init__(self, config: GatewayConfig):
        self.config = config
        self.health = ProviderHealth()

    @property
    @abstractmethod
    def gateway_name(self) -> str:
        """Name of this gateway for logging."""
        pass

    async def _execute(
        self, operation: str, call: Awaitable[tuple[int, TResponse]]
    ) -> GatewayResult[TResponse]:
        """Await a remote call returning (status code, body) and wrap its outcome."""
        start_time = time.perf_counter()
        try:
            status_code, data = await call
        except GatewayError as e:
            latency = (time.perf_counter() - start_time) * 1000
            self.health.record_failure(str(e), self.config.degraded_after_failures)
            logger.warning(f"{self.gateway_name}: {operation} failed: {e}")
            return GatewayResult(
                success=False,
                data=e.response,
                error=str(e),
                status_code=e.status_code,
                latency_ms=latency,
                metadata={"operation": operation, "timeout": isinstance(e, ProviderTimeoutError)},
            )

        latency = (time.perf_counter() - start_time) * 1000
        self.health.record_success(latency)
        logger.debug(f"{self.gateway_name}: {operation} succeeded in {latency:.1f}ms")
        return GatewayResult(
            success=True,
            data=data,
            status_code=status_code,
            latency_ms=latency,
            metadata={"operation": operation},
        )

    def get_status(self) -> ProviderHealth:
        return self.health

    async def close(self) -> None:
        """Clean up gateway resources."""
        logger.info(f"{self.gateway_name} gateway closed")

"""
Provisioner Contracts

Interfaces the orchestrator and aggregators drive. Concrete implementations
talk to MongoDB, Cloudflare and nginx; tests plug in deterministic fakes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ProbeStatus(str, Enum):
    """Per-subsystem health."""

    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


class ProbeResult(BaseModel):
    """Structured outcome of a single read-only probe."""

    status: ProbeStatus
    message: str = Field(default="")
    details: dict[str, Any] = Field(default_factory=dict)
    latency_ms: Optional[float] = Field(default=None)

    @classmethod
    def ok(cls, message: str = "ok", **details: Any) -> "ProbeResult":
        return cls(status=ProbeStatus.OK, message=message, details=details)

    @classmethod
    def degraded(cls, message: str, **details: Any) -> "ProbeResult":
        return cls(status=ProbeStatus.DEGRADED, message=message, details=details)

    @classmethod
    def failed(cls, message: str, **details: Any) -> "ProbeResult":
        return cls(status=ProbeStatus.FAILED, message=message, details=details)


class StoreUsage(BaseModel):
    """Usage counters read from a tenant store."""

    users: int = Field(default=0)
    articles: int = Field(default=0)
    categories: int = Field(default=0)
    tags: int = Field(default=0)
    published_articles: int = Field(default=0)
    draft_articles: int = Field(default=0)
    total_views: int = Field(default=0)
    recent_articles: int = Field(default=0)


class ResourceProvisioner(ABC):
    """Creates, destroys and inspects isolated per-tenant stores."""

    @abstractmethod
    async def create_store(self, handle: str) -> None:
        """Create the store and apply the tenant schema."""

    @abstractmethod
    async def destroy_store(self, handle: str) -> bool:
        """
        Destroy the store.

        Idempotent: a missing store is not an error.

        Returns:
            True if something was removed
        """

    @abstractmethod
    async def bootstrap_admin_identity(
        self,
        handle: str,
        email: str,
        secret: str,
        display_name: Optional[str] = None,
    ) -> str:
        """
        Create the default administrative identity inside the store.

        Returns:
            Identifier of the created identity
        """

    @abstractmethod
    async def store_exists(self, handle: str) -> bool:
        """Check whether the store currently exists."""

    @abstractmethod
    async def ping_store(self, handle: str) -> ProbeResult:
        """Connectivity probe for the store."""

    @abstractmethod
    async def collect_usage(self, handle: str, since: datetime) -> StoreUsage:
        """Read usage counters; ``since`` bounds the recent-activity window."""


class NetworkProvisioner(ABC):
    """Configures and inspects DNS, TLS and reverse-proxy routing for a domain."""

    @abstractmethod
    async def configure_routing(self, domain: str) -> None:
        """
        Configure DNS, TLS and routing, in that order.

        Raises:
            NetworkConfigurationError: tagged with the failing subsystem
        """

    @abstractmethod
    async def teardown_routing(self, domain: str) -> None:
        """Remove routing, certificate and DNS entries. Best-effort."""

    @abstractmethod
    async def probe_certificate(self, domain: str) -> ProbeResult:
        """Check the served certificate."""

    @abstractmethod
    async def probe_routing(self, domain: str) -> ProbeResult:
        """Check the reverse-proxy configuration is present."""

    @abstractmethod
    async def probe_dns(self, domain: str) -> ProbeResult:
        """Check the domain resolves."""

    @abstractmethod
    async def probe_liveness(self, domain: str) -> ProbeResult:
        """Check the tenant site answers its health endpoint."""

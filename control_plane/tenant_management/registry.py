"""
Tenant Registry Contract

The registry is the source of truth for tenant records and the single
serialization point for concurrent lifecycle changes: every mutation is
an atomic, constraint-checked operation on the server side.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from typing import Optional

from .models import Tenant, TenantPlan, TenantStatus


class TenantRegistry(ABC):
    """Atomic storage of tenant records."""

    @abstractmethod
    async def insert(self, tenant: Tenant) -> Tenant:
        """
        Insert a new tenant.

        Raises:
            ConflictError: If id, domain or subdomain is already registered
        """

    @abstractmethod
    async def get(self, tenant_id: str) -> Optional[Tenant]:
        """Get tenant by id."""

    @abstractmethod
    async def get_by_domain(self, domain: str) -> Optional[Tenant]:
        """Get tenant by primary domain."""

    @abstractmethod
    async def get_by_subdomain(self, subdomain: str) -> Optional[Tenant]:
        """Get tenant by subdomain."""

    @abstractmethod
    async def transition_status(
        self,
        tenant_id: str,
        target: TenantStatus,
        allowed_from: Iterable[TenantStatus],
        reason: Optional[str] = None,
        provisioning_stale_before: Optional[datetime] = None,
    ) -> Tenant:
        """
        Compare-and-set the status.

        Args:
            tenant_id: Tenant identifier
            target: New status
            allowed_from: Statuses the tenant may currently be in
            reason: Optional status reason
            provisioning_stale_before: When set, a tenant in ``provisioning``
                only qualifies if last updated before this instant

        Returns:
            Updated tenant

        Raises:
            NotFoundError: Unknown tenant
            ConflictError: Current status not in ``allowed_from``
        """

    @abstractmethod
    async def update_domain(self, tenant_id: str, expected_domain: str, new_domain: str) -> Tenant:
        """
        Compare-and-set the primary domain.

        Raises:
            NotFoundError: Unknown tenant
            ConflictError: Domain changed concurrently or ``new_domain`` taken
        """

    @abstractmethod
    async def delete(self, tenant_id: str) -> bool:
        """Delete the record. Returns False if it was already gone."""

    @abstractmethod
    async def list_tenants(
        self,
        status: Optional[TenantStatus] = None,
        plan: Optional[TenantPlan] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Tenant]:
        """List tenants, newest first."""

    @abstractmethod
    async def count_tenants(
        self,
        status: Optional[TenantStatus] = None,
        plan: Optional[TenantPlan] = None,
        search: Optional[str] = None,
    ) -> int:
        """Count tenants matching the filters."""

    @abstractmethod
    async def touch_activity(self, tenant_id: str) -> bool:
        """Record activity on the tenant."""

"""
Deterministic in-memory collaborators for tests.
"""

import asyncio
from collections.abc import Iterable
from datetime import datetime
from typing import Optional

from control_plane.exceptions import (
    ConflictError,
    ErrorCode,
    NetworkConfigurationError,
    NotFoundError,
)
from control_plane.provisioners.base import (
    NetworkProvisioner,
    ProbeResult,
    ResourceProvisioner,
    StoreUsage,
)
from control_plane.tenant_management.models import Tenant, TenantPlan, TenantStatus, utc_now
from control_plane.tenant_management.registry import TenantRegistry


class InMemoryTenantRegistry(TenantRegistry):
    """Registry with the same atomicity guarantees as the Mongo one."""

    def __init__(self):
        self.tenants: dict[str, Tenant] = {}
        self.lock = asyncio.Lock()
        self.transition_delays: dict[str, float] = {}
        self.active_transitions = 0
        self.max_concurrent_transitions = 0

    async def insert(self, tenant: Tenant) -> Tenant:
        async with self.lock:
            for existing in self.tenants.values():
                if existing.tenant_id == tenant.tenant_id:
                    raise ConflictError("duplicate id", field="tenant_id")
                if existing.domain == tenant.domain:
                    raise ConflictError("duplicate domain", code=ErrorCode.DOMAIN_EXISTS, field="domain")
                if tenant.subdomain and existing.subdomain == tenant.subdomain:
                    raise ConflictError(
                        "duplicate subdomain", code=ErrorCode.DOMAIN_EXISTS, field="subdomain"
                    )
            self.tenants[tenant.tenant_id] = tenant.model_copy(deep=True)
        return tenant

    async def get(self, tenant_id: str) -> Optional[Tenant]:
        tenant = self.tenants.get(tenant_id)
        return tenant.model_copy(deep=True) if tenant else None

    async def get_by_domain(self, domain: str) -> Optional[Tenant]:
        for tenant in self.tenants.values():
            if tenant.domain == domain:
                return tenant.model_copy(deep=True)
        return None

    async def get_by_subdomain(self, subdomain: str) -> Optional[Tenant]:
        for tenant in self.tenants.values():
            if tenant.subdomain == subdomain:
                return tenant.model_copy(deep=True)
        return None

    async def transition_status(
        self,
        tenant_id: str,
        target: TenantStatus,
        allowed_from: Iterable[TenantStatus],
        reason: Optional[str] = None,
        provisioning_stale_before: Optional[datetime] = None,
    ) -> Tenant:
        self.active_transitions += 1
        self.max_concurrent_transitions = max(
            self.max_concurrent_transitions, self.active_transitions
        )
        try:
            delay = self.transition_delays.get(tenant_id)
            if delay:
                await asyncio.sleep(delay)

            async with self.lock:
                tenant = self.tenants.get(tenant_id)
                if tenant is None:
                    raise NotFoundError(f"Tenant '{tenant_id}' not found")

                allowed = set(allowed_from)
                qualifies = tenant.status in allowed
                if (
                    qualifies
                    and tenant.status == TenantStatus.PROVISIONING
                    and provisioning_stale_before is not None
                ):
                    qualifies = tenant.updated_at < provisioning_stale_before

                if not qualifies:
                    if tenant.status == TenantStatus.PROVISIONING:
                        raise ConflictError(
                            "in progress", code=ErrorCode.PROVISIONING_IN_PROGRESS
                        )
                    raise ConflictError("bad transition", code=ErrorCode.INVALID_TRANSITION)

                tenant.status = target
                tenant.status_reason = reason
                tenant.updated_at = utc_now()
                return tenant.model_copy(deep=True)
        finally:
            self.active_transitions -= 1

    async def update_domain(self, tenant_id: str, expected_domain: str, new_domain: str) -> Tenant:
        async with self.lock:
            tenant = self.tenants.get(tenant_id)
            if tenant is None:
                raise NotFoundError(f"Tenant '{tenant_id}' not found")
            if any(t.domain == new_domain for t in self.tenants.values()):
                raise ConflictError("duplicate domain", code=ErrorCode.DOMAIN_EXISTS)
            if tenant.domain != expected_domain:
                raise ConflictError("changed", code=ErrorCode.INVALID_TRANSITION)
            tenant.domain = new_domain
            tenant.updated_at = utc_now()
            return tenant.model_copy(deep=True)

    async def delete(self, tenant_id: str) -> bool:
        async with self.lock:
            return self.tenants.pop(tenant_id, None) is not None

    def _matching(
        self,
        status: Optional[TenantStatus],
        plan: Optional[TenantPlan],
        search: Optional[str],
    ) -> list[Tenant]:
        matches = []
        for tenant in self.tenants.values():
            if status and tenant.status != status:
                continue
            if plan and tenant.plan != plan:
                continue
            if search:
                needle = search.lower()
                haystack = (tenant.name, tenant.domain, tenant.contact_email)
                if not any(needle in value.lower() for value in haystack):
                    continue
            matches.append(tenant)
        return sorted(matches, key=lambda t: t.created_at, reverse=True)

    async def list_tenants(self, status=None, plan=None, search=None, skip=0, limit=100):
        return [t.model_copy(deep=True) for t in self._matching(status, plan, search)[skip : skip + limit]]

    async def count_tenants(self, status=None, plan=None, search=None) -> int:
        return len(self._matching(status, plan, search))

    async def touch_activity(self, tenant_id: str) -> bool:
        tenant = self.tenants.get(tenant_id)
        if tenant is None:
            return False
        tenant.last_activity = utc_now()
        return True


class FakeResourceProvisioner(ResourceProvisioner):
    """Stores are names in a set; failures and delays are injectable per method."""

    def __init__(self):
        self.stores: set[str] = set()
        self.admins: dict[str, tuple[str, str]] = {}
        self.failures: dict[str, Exception] = {}
        self.failure_counts: dict[str, int] = {}
        self.delays: dict[str, float] = {}
        self.usage: dict[str, StoreUsage] = {}
        self.calls: list[tuple[str, str]] = []

    async def _step(self, method: str, handle: str) -> None:
        self.calls.append((method, handle))
        delay = self.delays.get(method)
        if delay:
            await asyncio.sleep(delay)
        error = self.failures.get(method)
        if error is not None:
            remaining = self.failure_counts.get(method)
            if remaining is None:
                raise error
            if remaining > 0:
                self.failure_counts[method] = remaining - 1
                raise error

    async def create_store(self, handle: str) -> None:
        self.stores.add(handle)
        await self._step("create_store", handle)

    async def destroy_store(self, handle: str) -> bool:
        await self._step("destroy_store", handle)
        if handle in self.stores:
            self.stores.discard(handle)
            return True
        return False

    async def bootstrap_admin_identity(self, handle, email, secret, display_name=None) -> str:
        await self._step("bootstrap_admin_identity", handle)
        self.admins[handle] = (email, secret)
        return f"admin-{handle}"

    async def store_exists(self, handle: str) -> bool:
        return handle in self.stores

    async def ping_store(self, handle: str) -> ProbeResult:
        await self._step("ping_store", handle)
        if handle not in self.stores:
            return ProbeResult.failed("Tenant store does not exist")
        return ProbeResult.ok("connected")

    async def collect_usage(self, handle: str, since: datetime) -> StoreUsage:
        await self._step("collect_usage", handle)
        return self.usage.get(handle, StoreUsage())


class FakeNetworkProvisioner(NetworkProvisioner):
    """Records configured domains; probe outcomes are scripted."""

    PROBES = ("probe_certificate", "probe_routing", "probe_dns", "probe_liveness")

    def __init__(self):
        self.configured: set[str] = set()
        self.configure_calls: list[str] = []
        self.teardown_calls: list[str] = []
        self.configure_error: Optional[NetworkConfigurationError] = None
        self.teardown_error: Optional[Exception] = None
        self.probe_results: dict[str, ProbeResult] = {}
        self.probe_errors: dict[str, Exception] = {}
        self.probe_delays: dict[str, float] = {}

    async def configure_routing(self, domain: str) -> None:
        self.configure_calls.append(domain)
        if self.configure_error is not None:
            raise self.configure_error
        self.configured.add(domain)

    async def teardown_routing(self, domain: str) -> None:
        self.teardown_calls.append(domain)
        self.configured.discard(domain)
        if self.teardown_error is not None:
            raise self.teardown_error

    async def _probe(self, name: str, domain: str) -> ProbeResult:
        delay = self.probe_delays.get(name)
        if delay:
            await asyncio.sleep(delay)
        if name in self.probe_errors:
            raise self.probe_errors[name]
        result = self.probe_results.get(name, ProbeResult.ok("ok", domain=domain))
        return result.model_copy(deep=True)

    async def probe_certificate(self, domain: str) -> ProbeResult:
        return await self._probe("probe_certificate", domain)

    async def probe_routing(self, domain: str) -> ProbeResult:
        return await self._probe("probe_routing", domain)

    async def probe_dns(self, domain: str) -> ProbeResult:
        return await self._probe("probe_dns", domain)

    async def probe_liveness(self, domain: str) -> ProbeResult:
        return await self._probe("probe_liveness", domain)

"""
Tenant Status Aggregator

Runs the read-only probes for one tenant concurrently and merges them into
a single report. A probe that fails, raises or times out only affects its
own entry.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Optional

from structlog import get_logger

from ..config import PlatformConfig, get_config
from ..exceptions import NotFoundError
from ..provisioners.base import NetworkProvisioner, ProbeResult, ProbeStatus, ResourceProvisioner
from ..shared_services.timeouts import with_timeout
from .models import Tenant, utc_now
from .registry import TenantRegistry
from .schema import TenantStatusReport

logger = get_logger()

ProbeFactory = Callable[[], Awaitable[ProbeResult]]


def overall_status(results: dict[str, ProbeResult]) -> ProbeStatus:
    """ok when every probe is ok, failed when every probe failed, else degraded."""
    statuses = {result.status for result in results.values()}
    if statuses == {ProbeStatus.OK}:
        return ProbeStatus.OK
    if statuses == {ProbeStatus.FAILED}:
        return ProbeStatus.FAILED
    return ProbeStatus.DEGRADED


class StatusAggregator:
    """Composite status reports for tenants."""

    def __init__(
        self,
        registry: TenantRegistry,
        resources: ResourceProvisioner,
        network: NetworkProvisioner,
        config: Optional[PlatformConfig] = None,
    ):
        self.registry = registry
        self.resources = resources
        self.network = network
        self.config = config or get_config()

    def _probes(self, tenant: Tenant) -> dict[str, ProbeFactory]:
        domain = tenant.domain
        return {
            "ssl_certificate": lambda: self.network.probe_certificate(domain),
            "nginx_config": lambda: self.network.probe_routing(domain),
            "dns_resolution": lambda: self.network.probe_dns(domain),
            "health_check": lambda: self.network.probe_liveness(domain),
            "database": lambda: self.resources.ping_store(tenant.resource_handle),
        }

    async def get_tenant_status(
        self, tenant_id: str, deadline: Optional[float] = None
    ) -> TenantStatusReport:
        """
        Probe every subsystem of a tenant.

        Args:
            tenant_id: Tenant identifier
            deadline: Overall budget; probes still running are reported failed

        Returns:
            Composite status report

        Raises:
            NotFoundError: Unknown tenant
        """
        tenant = await with_timeout(
            self.registry.get(tenant_id),
            self.config.registry_operation_timeout_seconds,
            "registry lookup",
        )
        if not tenant:
            raise NotFoundError(f"Tenant '{tenant_id}' not found", tenant_id=tenant_id)

        budget = deadline if deadline is not None else self.config.status_deadline_seconds
        tasks = {
            name: asyncio.create_task(self._run_probe(tenant_id, name, factory))
            for name, factory in self._probes(tenant).items()
        }

        try:
            done, pending = await asyncio.wait(tasks.values(), timeout=budget)
        finally:
            outstanding = [task for task in tasks.values() if not task.done()]
            for task in outstanding:
                task.cancel()
            if outstanding:
                await asyncio.gather(*outstanding, return_exceptions=True)

        services: dict[str, ProbeResult] = {}
        for name, task in tasks.items():
            if task in done:
                services[name] = task.result()
            else:
                services[name] = ProbeResult.failed("deadline exceeded")

        if pending:
            logger.warning(
                "tenant_status_deadline_exceeded",
                tenant_id=tenant_id,
                unfinished=[name for name, task in tasks.items() if task in pending],
            )

        report = TenantStatusReport(
            tenant_id=tenant.tenant_id,
            domain=tenant.domain,
            tenant_status=tenant.status,
            overall=overall_status(services),
            services=services,
            checked_at=utc_now(),
        )
        logger.info("tenant_status_checked", tenant_id=tenant_id, overall=report.overall.value)
        return report

    async def _run_probe(self, tenant_id: str, name: str, factory: ProbeFactory) -> ProbeResult:
        """Run one probe under its own timeout. Never raises."""
        timeout = self.config.probe_timeout_seconds
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(factory(), timeout=timeout)
        except asyncio.TimeoutError:
            result = ProbeResult.failed(f"timed out after {timeout:g}s")
        except Exception as e:
            logger.warning("tenant_probe_error", tenant_id=tenant_id, probe=name, error=str(e))
            message = f"probe error: {e}" if self.config.expose_error_details else "probe error"
            result = ProbeResult.failed(message)

        if result.latency_ms is None:
            result.latency_ms = (time.perf_counter() - started) * 1000
        return result

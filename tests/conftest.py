import pytest
from tenacity import wait_none

from control_plane.config import PlatformConfig
from control_plane.tenant_management.analytics import TenantAnalyticsService
from control_plane.tenant_management.bulk import BulkOperationExecutor
from control_plane.tenant_management.models import Tenant, TenantPlan, TenantStatus
from control_plane.tenant_management.provisioning import ProvisioningOrchestrator
from control_plane.tenant_management.schema import TenantCreateRequest
from control_plane.tenant_management.status import StatusAggregator

from .fakes import FakeNetworkProvisioner, FakeResourceProvisioner, InMemoryTenantRegistry


def make_config(**overrides) -> PlatformConfig:
    values = {
        "environment": "local",
        "registry_operation_timeout_seconds": 1.0,
        "store_operation_timeout_seconds": 1.0,
        "network_operation_timeout_seconds": 1.0,
        "compensation_timeout_seconds": 0.5,
        "compensation_max_attempts": 3,
        "probe_timeout_seconds": 0.2,
        "provisioning_deadline_seconds": 5.0,
        "status_deadline_seconds": 2.0,
        "bulk_deadline_seconds": 5.0,
        "bulk_max_concurrency": 3,
        "bulk_max_ids": 10,
        "enable_network_provisioning": True,
        "require_network_on_create": False,
    }
    values.update(overrides)
    return PlatformConfig(**values)


def make_request(domain: str = "acme.example.com", **overrides) -> TenantCreateRequest:
    values = {
        "name": "Acme Daily",
        "domain": domain,
        "contact_email": "editor@acme.example.com",
        "contact_name": "Jane Doe",
        "plan": "trial",
    }
    values.update(overrides)
    return TenantCreateRequest(**values)


async def seed_tenant(
    registry: InMemoryTenantRegistry,
    resources: FakeResourceProvisioner,
    domain: str,
    status: TenantStatus = TenantStatus.ACTIVE,
    plan: TenantPlan = TenantPlan.BASIC,
) -> Tenant:
    """Insert a tenant directly, with its store."""
    tenant = Tenant.new(
        name=domain.split(".")[0].title(),
        domain=domain,
        contact_email=f"admin@{domain}",
        contact_name="Admin User",
        plan=plan,
    )
    tenant.status = status
    await registry.insert(tenant)
    resources.stores.add(tenant.resource_handle)
    return tenant


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def registry():
    return InMemoryTenantRegistry()


@pytest.fixture
def resources():
    return FakeResourceProvisioner()


@pytest.fixture
def network():
    return FakeNetworkProvisioner()


@pytest.fixture
def orchestrator(registry, resources, network, config):
    orchestrator = ProvisioningOrchestrator(registry, resources, network, config)
    orchestrator.compensation_wait = wait_none()
    return orchestrator


@pytest.fixture
def status_aggregator(registry, resources, network, config):
    return StatusAggregator(registry, resources, network, config)


@pytest.fixture
def bulk_executor(orchestrator, config):
    return BulkOperationExecutor(orchestrator, config)


@pytest.fixture
def analytics_service(registry, resources, config):
    return TenantAnalyticsService(registry, resources, config)

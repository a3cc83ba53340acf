"""
Service Container

Wires the registry, provisioners and workflow services together once the
platform database is ready, and exposes them to request handlers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorClient

from ..config import PlatformConfig, get_config
from ..exceptions import CollaboratorUnavailableError, ErrorCode
from ..provisioners.base import NetworkProvisioner, ResourceProvisioner
from ..provisioners.mongo_store import MongoResourceProvisioner
from ..provisioners.network import EdgeNetworkProvisioner
from ..shared_services.database import PlatformDatabase
from ..tenant_management.analytics import TenantAnalyticsService
from ..tenant_management.bulk import BulkOperationExecutor
from ..tenant_management.provisioning import ProvisioningOrchestrator
from ..tenant_management.registry import TenantRegistry
from ..tenant_management.status import StatusAggregator


@dataclass
class ControlPlaneServices:
    """Everything the tenant management endpoints need."""

    config: PlatformConfig
    registry: TenantRegistry
    resources: ResourceProvisioner
    network: NetworkProvisioner
    orchestrator: ProvisioningOrchestrator
    status: StatusAggregator
    bulk: BulkOperationExecutor
    analytics: TenantAnalyticsService
    tenant_client: Optional[AsyncIOMotorClient] = None

    @classmethod
    def build(
        cls,
        registry: TenantRegistry,
        resources: ResourceProvisioner,
        network: NetworkProvisioner,
        config: Optional[PlatformConfig] = None,
    ) -> "ControlPlaneServices":
        config = config or get_config()
        orchestrator = ProvisioningOrchestrator(registry, resources, network, config)
        return cls(
            config=config,
            registry=registry,
            resources=resources,
            network=network,
            orchestrator=orchestrator,
            status=StatusAggregator(registry, resources, network, config),
            bulk=BulkOperationExecutor(orchestrator, config),
            analytics=TenantAnalyticsService(registry, resources, config),
        )

    @classmethod
    def from_database(
        cls, database: PlatformDatabase, config: Optional[PlatformConfig] = None
    ) -> "ControlPlaneServices":
        """Production wiring on top of a ready platform database."""
        config = config or get_config()
        separate_client = None
        if config.get_tenant_mongo_url() != config.platform_mongo_db_url:
            separate_client = AsyncIOMotorClient(config.get_tenant_mongo_url())

        services = cls.build(
            registry=database.registry,
            resources=MongoResourceProvisioner(separate_client or database.client),
            network=EdgeNetworkProvisioner(config),
            config=config,
        )
        services.tenant_client = separate_client
        return services

    async def close(self) -> None:
        close = getattr(self.network, "close", None)
        if close is not None:
            await close()
        if self.tenant_client is not None:
            self.tenant_client.close()


def get_services(request: Request) -> ControlPlaneServices:
    """Request dependency; fails with 503 until startup has completed."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise CollaboratorUnavailableError("Service not ready", code=ErrorCode.SERVICE_NOT_READY)
    return services

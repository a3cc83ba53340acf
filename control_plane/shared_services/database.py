"""
Platform Database

Owns the connection to the platform database that holds the tenant
registry. The control plane only accepts orchestration calls once
``connect()`` has verified the server and the registry indexes.
"""

import asyncio
from enum import Enum
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from structlog import get_logger

from ..config import PlatformConfig, get_config
from ..exceptions import CollaboratorUnavailableError, ErrorCode
from ..tenant_management.db_service import MongoTenantRegistry

logger = get_logger()


class ReadinessState(str, Enum):
    """Lifecycle of the platform database connection."""

    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


class PlatformDatabase:
    """Connection and readiness state for the tenant registry."""

    def __init__(
        self,
        config: Optional[PlatformConfig] = None,
        client: Optional[AsyncIOMotorClient] = None,
    ):
        self.config = config or get_config()
        self.client = client
        self.state = ReadinessState.STARTING
        self.error: Optional[str] = None
        self._registry: Optional[MongoTenantRegistry] = None

    @property
    def db(self) -> AsyncIOMotorDatabase:
        self.require_ready()
        return self.client[self.config.platform_mongo_db_name]

    @property
    def registry(self) -> MongoTenantRegistry:
        self.require_ready()
        return self._registry

    async def connect(self) -> None:
        """
        Connect, ping and ensure registry indexes.

        Raises:
            CollaboratorUnavailableError: If the server cannot be verified in time
        """
        timeout = self.config.registry_connect_timeout_seconds
        if self.client is None:
            self.client = AsyncIOMotorClient(
                self.config.platform_mongo_db_url,
                serverSelectionTimeoutMS=int(timeout * 1000),
            )

        registry = MongoTenantRegistry(self.client[self.config.platform_mongo_db_name])
        try:
            await asyncio.wait_for(registry.ping(), timeout=timeout)
            await asyncio.wait_for(registry.ensure_indexes(), timeout=timeout)
        except (asyncio.TimeoutError, PyMongoError, CollaboratorUnavailableError) as e:
            self.state = ReadinessState.FAILED
            self.error = str(e) or type(e).__name__
            logger.error("platform_database_connect_failed", error=self.error)
            raise CollaboratorUnavailableError(
                "Platform database unavailable",
                code=ErrorCode.SERVICE_NOT_READY,
                cause=e,
            ) from e

        self._registry = registry
        self.state = ReadinessState.READY
        self.error = None
        logger.info("platform_database_ready", database=self.config.platform_mongo_db_name)

    def require_ready(self) -> None:
        """Raise unless ``connect()`` has succeeded."""
        if self.state != ReadinessState.READY:
            raise CollaboratorUnavailableError(
                f"Service not ready ({self.state.value})",
                code=ErrorCode.SERVICE_NOT_READY,
            )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
        self.state = ReadinessState.STOPPED
        logger.info("platform_database_closed")

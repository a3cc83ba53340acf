"""
MongoDB Resource Provisioner

One MongoDB database per tenant. The database name is the tenant's
resource handle, so every operation can be replayed from the handle alone.
"""

import asyncio
import time
from datetime import datetime
from typing import Optional
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import DuplicateKeyError, PyMongoError
from structlog import get_logger

from ..auth.security import CredentialHasher
from ..config import get_config
from ..tenant_management.models import utc_now
from .base import ProbeResult, ResourceProvisioner, StoreUsage
from .tenant_schema import apply_tenant_schema, current_schema_version, latest_schema_version

logger = get_logger()


class MongoResourceProvisioner(ResourceProvisioner):
    """Creates and destroys tenant databases on a MongoDB server."""

    def __init__(
        self,
        mongo_client: Optional[AsyncIOMotorClient] = None,
        hasher: Optional[CredentialHasher] = None,
    ):
        """
        Initialize the provisioner.

        Args:
            mongo_client: Optional client (creates one from config if not provided)
            hasher: Credential hasher used for the bootstrap identity
        """
        self.mongo_client = mongo_client or AsyncIOMotorClient(
            get_config().get_tenant_mongo_url()
        )
        self.hasher = hasher or CredentialHasher()

    async def create_store(self, handle: str) -> None:
        # MongoDB creates databases on first write
        tenant_db = self.mongo_client[handle]
        await tenant_db["_initialization"].update_one(
            {"_id": "store"},
            {"$setOnInsert": {"initialized_at": utc_now()}},
            upsert=True,
        )

        version = await apply_tenant_schema(tenant_db)
        logger.info("tenant_store_created", database=handle, schema_version=version)

    async def destroy_store(self, handle: str) -> bool:
        if not await self.store_exists(handle):
            logger.info("tenant_store_already_absent", database=handle)
            return False

        await self.mongo_client.drop_database(handle)
        logger.warning("tenant_store_dropped", database=handle)
        return True

    async def bootstrap_admin_identity(
        self,
        handle: str,
        email: str,
        secret: str,
        display_name: Optional[str] = None,
    ) -> str:
        name_parts = (display_name or "").split()
        first_name = name_parts[0] if name_parts else "Admin"
        last_name = " ".join(name_parts[1:]) or "User"

        user_id = f"user_{uuid4().hex[:12]}"
        now = utc_now()
        users = self.mongo_client[handle]["users"]
        # argon2 is CPU-bound
        hashed = await asyncio.to_thread(self.hasher.hash, secret)

        try:
            await users.insert_one(
                {
                    "user_id": user_id,
                    "email": email,
                    "hashed_password": hashed,
                    "first_name": first_name,
                    "last_name": last_name,
                    "role": "admin",
                    "status": "active",
                    "email_verified": True,
                    "must_change_password": True,
                    "created_at": now,
                    "updated_at": now,
                }
            )
        except DuplicateKeyError as e:
            raise ValueError(f"Admin identity '{email}' already exists in {handle}") from e

        logger.info("tenant_admin_identity_created", database=handle, user_id=user_id)
        return user_id

    async def store_exists(self, handle: str) -> bool:
        names = await self.mongo_client.list_database_names()
        return handle in names

    async def ping_store(self, handle: str) -> ProbeResult:
        started = time.perf_counter()
        try:
            if not await self.store_exists(handle):
                return ProbeResult.failed("Tenant store does not exist", database=handle)

            tenant_db = self.mongo_client[handle]
            await tenant_db.command("ping")
            version = await current_schema_version(tenant_db)
        except PyMongoError as e:
            return ProbeResult.failed(f"Store unreachable: {e}", database=handle)

        latency_ms = (time.perf_counter() - started) * 1000
        latest = latest_schema_version()
        if version < latest:
            result = ProbeResult.degraded(
                f"Schema version {version} behind {latest}",
                database=handle,
                schema_version=version,
            )
        else:
            result = ProbeResult.ok("connected", database=handle, schema_version=version)
        result.latency_ms = latency_ms
        return result

    async def collect_usage(self, handle: str, since: datetime) -> StoreUsage:
        tenant_db = self.mongo_client[handle]
        news = tenant_db["news"]

        views = await news.aggregate(
            [{"$group": {"_id": None, "total": {"$sum": "$views_count"}}}]
        ).to_list(length=1)

        return StoreUsage(
            users=await tenant_db["users"].count_documents({}),
            articles=await news.count_documents({}),
            categories=await tenant_db["categories"].count_documents({}),
            tags=await tenant_db["tags"].count_documents({}),
            published_articles=await news.count_documents({"status": "published"}),
            draft_articles=await news.count_documents({"status": "draft"}),
            total_views=int(views[0]["total"]) if views else 0,
            recent_articles=await news.count_documents({"created_at": {"$gte": since}}),
        )

"""
Tenant Registry (MongoDB)

Stores tenant records in the platform database. Uniqueness of id, domain
and subdomain is enforced by unique indexes; lifecycle changes are
single-document compare-and-set updates.
"""

import re
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel, ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError
from structlog import get_logger

from ..exceptions import CollaboratorUnavailableError, ConflictError, ErrorCode, NotFoundError
from .models import Tenant, TenantPlan, TenantStatus, utc_now
from .registry import TenantRegistry

logger = get_logger()


def duplicate_field(error: DuplicateKeyError) -> str:
    """Name of the field that violated a unique index."""
    key_pattern = (error.details or {}).get("keyPattern") or {}
    if key_pattern:
        return next(iter(key_pattern))
    message = str(error)
    for field in ("subdomain", "domain", "tenant_id"):
        if field in message:
            return field
    return "unknown"


@contextmanager
def registry_errors() -> Iterator[None]:
    """Surface connectivity failures as collaborator errors."""
    try:
        yield
    except ConnectionFailure as e:
        raise CollaboratorUnavailableError("Tenant registry unavailable", cause=e) from e


class MongoTenantRegistry(TenantRegistry):
    """
    Tenant registry backed by MongoDB.

    Operates on the platform database, not tenant-specific databases.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        """
        Initialize tenant registry.

        Args:
            db: Platform database instance
        """
        self.db = db
        self.collection = self.db["tenants"]

    async def ensure_indexes(self) -> None:
        """Create necessary indexes for tenant collection."""
        indexes = [
            IndexModel([("tenant_id", ASCENDING)], unique=True),
            IndexModel([("domain", ASCENDING)], unique=True),
            IndexModel(
                [("subdomain", ASCENDING)],
                unique=True,
                partialFilterExpression={"subdomain": {"$type": "string"}},
            ),
            IndexModel([("status", ASCENDING)]),
            IndexModel([("plan", ASCENDING)]),
            IndexModel([("created_at", DESCENDING)]),
        ]
        with registry_errors():
            await self.collection.create_indexes(indexes)

    async def ping(self) -> None:
        """Round-trip to the server."""
        with registry_errors():
            await self.db.command("ping")

    async def insert(self, tenant: Tenant) -> Tenant:
        document = tenant.model_dump()
        if document.get("subdomain") is None:
            # keep the partial unique index from matching absent subdomains
            document.pop("subdomain", None)

        try:
            with registry_errors():
                await self.collection.insert_one(document)
        except DuplicateKeyError as e:
            field = duplicate_field(e)
            logger.info("tenant_insert_conflict", tenant_id=tenant.tenant_id, field=field)
            raise ConflictError(
                "Domain or subdomain already exists",
                code=ErrorCode.DOMAIN_EXISTS,
                field=field,
            ) from e
        return tenant

    async def get(self, tenant_id: str) -> Optional[Tenant]:
        with registry_errors():
            document = await self.collection.find_one({"tenant_id": tenant_id})
        return Tenant(**document) if document else None

    async def get_by_domain(self, domain: str) -> Optional[Tenant]:
        with registry_errors():
            document = await self.collection.find_one({"domain": domain})
        return Tenant(**document) if document else None

    async def get_by_subdomain(self, subdomain: str) -> Optional[Tenant]:
        with registry_errors():
            document = await self.collection.find_one({"subdomain": subdomain})
        return Tenant(**document) if document else None

    async def transition_status(
        self,
        tenant_id: str,
        target: TenantStatus,
        allowed_from: Iterable[TenantStatus],
        reason: Optional[str] = None,
        provisioning_stale_before: Optional[datetime] = None,
    ) -> Tenant:
        allowed = [TenantStatus(s).value for s in allowed_from]
        query: dict[str, Any] = {"tenant_id": tenant_id}

        if provisioning_stale_before is not None and TenantStatus.PROVISIONING.value in allowed:
            others = [s for s in allowed if s != TenantStatus.PROVISIONING.value]
            query["$or"] = [
                {"status": {"$in": others}},
                {
                    "status": TenantStatus.PROVISIONING.value,
                    "updated_at": {"$lt": provisioning_stale_before},
                },
            ]
        else:
            query["status"] = {"$in": allowed}

        now = utc_now()
        with registry_errors():
            document = await self.collection.find_one_and_update(
                query,
                {
                    "$set": {
                        "status": target.value,
                        "status_reason": reason,
                        "updated_at": now,
                    }
                },
                return_document=ReturnDocument.AFTER,
            )

        if document:
            return Tenant(**document)

        # classify the failed compare-and-set
        current = await self.get(tenant_id)
        if current is None:
            raise NotFoundError(f"Tenant '{tenant_id}' not found", tenant_id=tenant_id)
        if current.status == TenantStatus.PROVISIONING:
            raise ConflictError(
                "Tenant provisioning is in progress",
                code=ErrorCode.PROVISIONING_IN_PROGRESS,
                tenant_id=tenant_id,
            )
        raise ConflictError(
            f"Cannot move tenant from {current.status.value} to {target.value}",
            code=ErrorCode.INVALID_TRANSITION,
            tenant_id=tenant_id,
            current_status=current.status.value,
        )

    async def update_domain(self, tenant_id: str, expected_domain: str, new_domain: str) -> Tenant:
        try:
            with registry_errors():
                document = await self.collection.find_one_and_update(
                    {"tenant_id": tenant_id, "domain": expected_domain},
                    {"$set": {"domain": new_domain, "updated_at": utc_now()}},
                    return_document=ReturnDocument.AFTER,
                )
        except DuplicateKeyError as e:
            raise ConflictError(
                "Domain already exists", code=ErrorCode.DOMAIN_EXISTS, domain=new_domain
            ) from e

        if document:
            return Tenant(**document)

        if await self.get(tenant_id) is None:
            raise NotFoundError(f"Tenant '{tenant_id}' not found", tenant_id=tenant_id)
        raise ConflictError(
            "Tenant domain changed concurrently",
            code=ErrorCode.INVALID_TRANSITION,
            tenant_id=tenant_id,
        )

    async def delete(self, tenant_id: str) -> bool:
        with registry_errors():
            result = await self.collection.delete_one({"tenant_id": tenant_id})
        return result.deleted_count > 0

    def _build_query(
        self,
        status: Optional[TenantStatus],
        plan: Optional[TenantPlan],
        search: Optional[str],
    ) -> dict[str, Any]:
        query: dict[str, Any] = {}
        if status:
            query["status"] = TenantStatus(status).value
        if plan:
            query["plan"] = TenantPlan(plan).value
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [
                {"name": pattern},
                {"domain": pattern},
                {"contact_email": pattern},
            ]
        return query

    async def list_tenants(
        self,
        status: Optional[TenantStatus] = None,
        plan: Optional[TenantPlan] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Tenant]:
        query = self._build_query(status, plan, search)
        cursor = self.collection.find(query).sort("created_at", -1).skip(skip).limit(limit)

        tenants = []
        with registry_errors():
            async for document in cursor:
                tenants.append(Tenant(**document))
        return tenants

    async def count_tenants(
        self,
        status: Optional[TenantStatus] = None,
        plan: Optional[TenantPlan] = None,
        search: Optional[str] = None,
    ) -> int:
        with registry_errors():
            return await self.collection.count_documents(self._build_query(status, plan, search))

    async def touch_activity(self, tenant_id: str) -> bool:
        now = utc_now()
        with registry_errors():
            result = await self.collection.update_one(
                {"tenant_id": tenant_id},
                {"$set": {"last_activity": now}},
            )
        return result.matched_count > 0

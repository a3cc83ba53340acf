"""
Tenant Store Schema

Versioned, declarative description of the collections and indexes every
tenant store needs. ``apply_tenant_schema`` brings a store up to the latest
version and records each applied version in ``_schema_migrations``.
"""

from dataclasses import dataclass, field

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel
from structlog import get_logger

from ..tenant_management.models import utc_now

logger = get_logger()

MIGRATIONS_COLLECTION = "_schema_migrations"


@dataclass(frozen=True)
class SchemaMigration:
    """One schema version: collections and the indexes to create on them."""

    version: int
    description: str
    collections: dict[str, list[IndexModel]] = field(default_factory=dict)


TENANT_SCHEMA_MIGRATIONS: list[SchemaMigration] = [
    SchemaMigration(
        version=1,
        description="Core content collections",
        collections={
            "users": [
                IndexModel([("user_id", ASCENDING)], unique=True),
                IndexModel([("email", ASCENDING)], unique=True),
                IndexModel([("role", ASCENDING)]),
                IndexModel([("status", ASCENDING)]),
            ],
            "categories": [
                IndexModel([("slug", ASCENDING)], unique=True),
                IndexModel([("parent_id", ASCENDING)]),
                IndexModel([("is_active", ASCENDING)]),
            ],
            "tags": [
                IndexModel([("slug", ASCENDING)], unique=True),
                IndexModel([("name", ASCENDING)], unique=True),
            ],
            "news": [
                IndexModel([("slug", ASCENDING)], unique=True),
                IndexModel([("status", ASCENDING)]),
                IndexModel([("category_id", ASCENDING)]),
                IndexModel([("author_id", ASCENDING)]),
                IndexModel([("published_at", DESCENDING)]),
                IndexModel([("created_at", DESCENDING)]),
            ],
            "news_tags": [
                IndexModel([("news_id", ASCENDING), ("tag_id", ASCENDING)], unique=True),
                IndexModel([("tag_id", ASCENDING)]),
            ],
        },
    ),
    SchemaMigration(
        version=2,
        description="Popularity and featured listings",
        collections={
            "news": [
                IndexModel([("views_count", DESCENDING)]),
                IndexModel([("is_featured", ASCENDING), ("published_at", DESCENDING)]),
            ],
        },
    ),
]


def latest_schema_version() -> int:
    """Highest declared schema version."""
    return max(m.version for m in TENANT_SCHEMA_MIGRATIONS)


async def current_schema_version(db: AsyncIOMotorDatabase) -> int:
    """Highest applied schema version (0 for an empty store)."""
    latest = await db[MIGRATIONS_COLLECTION].find_one(sort=[("version", DESCENDING)])
    return int(latest["version"]) if latest else 0


async def apply_tenant_schema(db: AsyncIOMotorDatabase) -> int:
    """
    Apply pending migrations in version order.

    Args:
        db: Tenant database

    Returns:
        Schema version after applying
    """
    applied = await current_schema_version(db)

    for migration in sorted(TENANT_SCHEMA_MIGRATIONS, key=lambda m: m.version):
        if migration.version <= applied:
            continue

        for collection_name, indexes in migration.collections.items():
            if indexes:
                await db[collection_name].create_indexes(indexes)

        await db[MIGRATIONS_COLLECTION].insert_one(
            {
                "version": migration.version,
                "description": migration.description,
                "applied_at": utc_now(),
            }
        )
        applied = migration.version

        logger.info(
            "tenant_schema_migration_applied",
            database=db.name,
            version=migration.version,
            collections=len(migration.collections),
        )

    return applied

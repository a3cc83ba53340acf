from collections import defaultdict
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError

from control_plane.provisioners.base import ProbeStatus
from control_plane.provisioners.mongo_store import MongoResourceProvisioner
from control_plane.provisioners.tenant_schema import (
    MIGRATIONS_COLLECTION,
    apply_tenant_schema,
    latest_schema_version,
)
from control_plane.tenant_management.models import utc_now

HANDLE = "news_cms_tenant_0f8fad5b"


def make_collection():
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.create_indexes = AsyncMock()
    collection.insert_one = AsyncMock()
    collection.update_one = AsyncMock()
    collection.count_documents = AsyncMock(return_value=0)
    collection.aggregate.return_value.to_list = AsyncMock(return_value=[])
    return collection


@pytest.fixture
def collections():
    return defaultdict(make_collection)


@pytest.fixture
def tenant_db(collections):
    db = MagicMock()
    db.name = HANDLE
    db.__getitem__.side_effect = lambda name: collections[name]
    db.command = AsyncMock()
    return db


@pytest.fixture
def client(tenant_db):
    client = MagicMock()
    client.__getitem__.return_value = tenant_db
    client.list_database_names = AsyncMock(return_value=[])
    client.drop_database = AsyncMock()
    return client


@pytest.fixture
def provisioner(client):
    hasher = MagicMock()
    hasher.hash.return_value = "$argon2id$hashed"
    return MongoResourceProvisioner(client, hasher=hasher)


class TestTenantSchema:
    async def test_fresh_store_gets_every_migration(self, tenant_db, collections):
        version = await apply_tenant_schema(tenant_db)

        assert version == latest_schema_version()
        assert collections["users"].create_indexes.await_count == 1
        assert collections["news"].create_indexes.await_count == 2
        recorded = [c.args[0]["version"] for c in collections[MIGRATIONS_COLLECTION].insert_one.await_args_list]
        assert recorded == [1, 2]

    async def test_only_pending_migrations_run(self, tenant_db, collections):
        collections[MIGRATIONS_COLLECTION].find_one.return_value = {"version": 1}

        version = await apply_tenant_schema(tenant_db)

        assert version == 2
        collections["users"].create_indexes.assert_not_awaited()
        assert collections["news"].create_indexes.await_count == 1


class TestMongoResourceProvisioner:
    async def test_create_store_marks_and_migrates(self, provisioner, collections):
        await provisioner.create_store(HANDLE)

        collections["_initialization"].update_one.assert_awaited_once()
        assert collections[MIGRATIONS_COLLECTION].insert_one.await_count == latest_schema_version()

    async def test_destroy_missing_store_is_noop(self, provisioner, client):
        assert await provisioner.destroy_store(HANDLE) is False
        client.drop_database.assert_not_awaited()

    async def test_destroy_existing_store(self, provisioner, client):
        client.list_database_names.return_value = [HANDLE]

        assert await provisioner.destroy_store(HANDLE) is True
        client.drop_database.assert_awaited_once_with(HANDLE)

    async def test_bootstrap_admin_stores_only_a_hash(self, provisioner, collections):
        user_id = await provisioner.bootstrap_admin_identity(
            HANDLE, "editor@acme.example.com", "Temp0rary!Pw", "Jane van Doe"
        )

        document = collections["users"].insert_one.await_args.args[0]
        assert document["user_id"] == user_id
        assert document["hashed_password"] == "$argon2id$hashed"
        assert "Temp0rary!Pw" not in document.values()
        assert document["first_name"] == "Jane"
        assert document["last_name"] == "van Doe"
        assert document["role"] == "admin"
        assert document["must_change_password"] is True

    async def test_bootstrap_admin_duplicate(self, provisioner, collections):
        collections["users"].insert_one.side_effect = DuplicateKeyError("E11000", 11000)

        with pytest.raises(ValueError):
            await provisioner.bootstrap_admin_identity(HANDLE, "editor@acme.example.com", "x" * 12)

    async def test_ping_missing_store(self, provisioner):
        result = await provisioner.ping_store(HANDLE)

        assert result.status == ProbeStatus.FAILED

    async def test_ping_outdated_schema(self, provisioner, client, collections):
        client.list_database_names.return_value = [HANDLE]
        collections[MIGRATIONS_COLLECTION].find_one.return_value = {"version": 1}

        result = await provisioner.ping_store(HANDLE)

        assert result.status == ProbeStatus.DEGRADED
        assert result.details["schema_version"] == 1

    async def test_ping_current_schema(self, provisioner, client, collections):
        client.list_database_names.return_value = [HANDLE]
        collections[MIGRATIONS_COLLECTION].find_one.return_value = {"version": latest_schema_version()}

        result = await provisioner.ping_store(HANDLE)

        assert result.status == ProbeStatus.OK
        assert result.latency_ms is not None

    async def test_collect_usage(self, provisioner, collections):
        collections["users"].count_documents.return_value = 4
        collections["news"].count_documents.return_value = 9
        collections["news"].aggregate.return_value.to_list.return_value = [{"_id": None, "total": 321}]
        since = utc_now() - timedelta(days=30)

        usage = await provisioner.collect_usage(HANDLE, since)

        assert usage.users == 4
        assert usage.articles == 9
        assert usage.total_views == 321
        recent_filter = collections["news"].count_documents.await_args_list[-1].args[0]
        assert recent_filter == {"created_at": {"$gte": since}}

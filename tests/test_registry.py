from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from control_plane.exceptions import (
    CollaboratorUnavailableError,
    ConflictError,
    ErrorCode,
    NotFoundError,
)
from control_plane.tenant_management.db_service import MongoTenantRegistry, duplicate_field
from control_plane.tenant_management.models import Tenant, TenantStatus, utc_now


def make_tenant(**overrides) -> Tenant:
    tenant = Tenant.new(
        name="Acme Daily",
        domain="acme.example.com",
        contact_email="editor@acme.example.com",
        contact_name="Jane Doe",
    )
    return tenant.model_copy(update=overrides)


def document_for(tenant: Tenant) -> dict:
    return {"_id": "object-id", **tenant.model_dump()}


@pytest.fixture
def collection():
    collection = MagicMock()
    collection.insert_one = AsyncMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.find_one_and_update = AsyncMock(return_value=None)
    collection.delete_one = AsyncMock()
    collection.count_documents = AsyncMock(return_value=0)
    collection.update_one = AsyncMock()
    collection.create_indexes = AsyncMock()
    return collection


@pytest.fixture
def registry(collection):
    db = MagicMock()
    db.__getitem__.return_value = collection
    db.command = AsyncMock()
    return MongoTenantRegistry(db)


def test_duplicate_field_from_key_pattern():
    error = DuplicateKeyError("E11000", 11000, {"keyPattern": {"subdomain": 1}})
    assert duplicate_field(error) == "subdomain"


def test_duplicate_field_from_message():
    error = DuplicateKeyError("E11000 duplicate key error index: domain_1", 11000)
    assert duplicate_field(error) == "domain"


class TestInsert:
    async def test_absent_subdomain_is_not_stored(self, registry, collection):
        await registry.insert(make_tenant())

        document = collection.insert_one.await_args.args[0]
        assert "subdomain" not in document
        assert document["status"] == "provisioning"

    async def test_duplicate_key_becomes_conflict(self, registry, collection):
        collection.insert_one.side_effect = DuplicateKeyError(
            "E11000", 11000, {"keyPattern": {"domain": 1}}
        )

        with pytest.raises(ConflictError) as exc_info:
            await registry.insert(make_tenant())

        assert exc_info.value.code == ErrorCode.DOMAIN_EXISTS
        assert exc_info.value.context["field"] == "domain"

    async def test_connection_failure_is_collaborator_error(self, registry, collection):
        collection.insert_one.side_effect = ServerSelectionTimeoutError("no servers")

        with pytest.raises(CollaboratorUnavailableError):
            await registry.insert(make_tenant())


class TestTransitionStatus:
    async def test_compare_and_set_filter(self, registry, collection):
        tenant = make_tenant(status=TenantStatus.SUSPENDED)
        collection.find_one_and_update.return_value = document_for(tenant)

        result = await registry.transition_status(
            tenant.tenant_id, TenantStatus.SUSPENDED, {TenantStatus.ACTIVE}, reason="billing"
        )

        query, update = collection.find_one_and_update.await_args.args
        assert query == {"tenant_id": tenant.tenant_id, "status": {"$in": ["active"]}}
        assert update["$set"]["status"] == "suspended"
        assert update["$set"]["status_reason"] == "billing"
        assert result.status == TenantStatus.SUSPENDED

    async def test_stale_provisioning_filter(self, registry, collection):
        tenant = make_tenant(status=TenantStatus.INACTIVE)
        collection.find_one_and_update.return_value = document_for(tenant)
        stale_before = utc_now()

        await registry.transition_status(
            tenant.tenant_id,
            TenantStatus.INACTIVE,
            [TenantStatus.PROVISIONING, TenantStatus.ACTIVE],
            provisioning_stale_before=stale_before,
        )

        query = collection.find_one_and_update.await_args.args[0]
        assert query["$or"] == [
            {"status": {"$in": ["active"]}},
            {"status": "provisioning", "updated_at": {"$lt": stale_before}},
        ]

    async def test_missing_tenant(self, registry):
        with pytest.raises(NotFoundError):
            await registry.transition_status("missing", TenantStatus.ACTIVE, [TenantStatus.SUSPENDED])

    async def test_in_flight_provisioning(self, registry, collection):
        collection.find_one.return_value = document_for(make_tenant())

        with pytest.raises(ConflictError) as exc_info:
            await registry.transition_status("t-1", TenantStatus.INACTIVE, [TenantStatus.ACTIVE])

        assert exc_info.value.code == ErrorCode.PROVISIONING_IN_PROGRESS

    async def test_disallowed_transition(self, registry, collection):
        collection.find_one.return_value = document_for(make_tenant(status=TenantStatus.INACTIVE))

        with pytest.raises(ConflictError) as exc_info:
            await registry.transition_status("t-1", TenantStatus.ACTIVE, [TenantStatus.SUSPENDED])

        assert exc_info.value.code == ErrorCode.INVALID_TRANSITION


class TestUpdateDomain:
    async def test_swap_is_conditional_on_old_domain(self, registry, collection):
        tenant = make_tenant(domain="new.example.com", status=TenantStatus.ACTIVE)
        collection.find_one_and_update.return_value = document_for(tenant)

        result = await registry.update_domain(tenant.tenant_id, "old.example.com", "new.example.com")

        query = collection.find_one_and_update.await_args.args[0]
        assert query == {"tenant_id": tenant.tenant_id, "domain": "old.example.com"}
        assert result.domain == "new.example.com"

    async def test_taken_domain(self, registry, collection):
        collection.find_one_and_update.side_effect = DuplicateKeyError("E11000", 11000)

        with pytest.raises(ConflictError) as exc_info:
            await registry.update_domain("t-1", "old.example.com", "new.example.com")

        assert exc_info.value.code == ErrorCode.DOMAIN_EXISTS


class TestQueries:
    async def test_search_is_escaped_and_case_insensitive(self, registry):
        query = registry._build_query(TenantStatus.ACTIVE, None, "acme.example")

        assert query["status"] == "active"
        assert {"domain": {"$regex": r"acme\.example", "$options": "i"}} in query["$or"]

    async def test_delete_reports_removal(self, registry, collection):
        collection.delete_one.return_value = MagicMock(deleted_count=1)

        assert await registry.delete("t-1") is True

    async def test_touch_activity_unknown_tenant(self, registry, collection):
        collection.update_one.return_value = MagicMock(matched_count=0)

        assert await registry.touch_activity("missing") is False

    async def test_indexes(self, registry, collection):
        await registry.ensure_indexes()

        indexes = collection.create_indexes.await_args.args[0]
        unique = [index.document for index in indexes if index.document.get("unique")]
        assert len(unique) == 3
        subdomain = next(doc for doc in unique if "subdomain" in doc["key"])
        assert subdomain["partialFilterExpression"] == {"subdomain": {"$type": "string"}}

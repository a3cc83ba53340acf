import string
from datetime import timedelta

import pytest
from pydantic import ValidationError

from control_plane.config import PlatformConfig
from control_plane.tenant_management.models import (
    ALLOWED_TRANSITIONS,
    Tenant,
    TenantPlan,
    TenantStatus,
    resource_handle_for,
    utc_now,
)
from control_plane.tenant_management.provisioning import SECRET_SYMBOLS, generate_temporary_secret
from control_plane.tenant_management.schema import TenantCreateRequest, normalize_domain

from .conftest import make_request


class TestTemporarySecret:
    def test_character_classes(self):
        for _ in range(50):
            secret = generate_temporary_secret()
            assert len(secret) == 12
            assert any(c in string.ascii_lowercase for c in secret)
            assert any(c in string.ascii_uppercase for c in secret)
            assert any(c in string.digits for c in secret)
            assert any(c in SECRET_SYMBOLS for c in secret)

    def test_longer_secret(self):
        assert len(generate_temporary_secret(32)) == 32

    def test_secrets_differ(self):
        assert len({generate_temporary_secret() for _ in range(20)}) == 20

    def test_too_short(self):
        with pytest.raises(ValueError):
            generate_temporary_secret(8)


class TestTenant:
    def test_new_trial_tenant(self):
        tenant = Tenant.new(
            name="Acme Daily",
            domain="acme.example.com",
            contact_email="editor@acme.example.com",
            contact_name="Jane Doe",
            trial_period_days=30,
        )

        assert tenant.status == TenantStatus.PROVISIONING
        assert tenant.limits.max_users == 5
        assert tenant.limits.max_articles == 100
        assert tenant.trial_ends_at - tenant.created_at == timedelta(days=30)
        assert tenant.resource_handle == "news_cms_tenant_" + tenant.tenant_id.replace("-", "_")

    def test_paid_plan_has_no_trial(self):
        tenant = Tenant.new(
            name="Acme Daily",
            domain="acme.example.com",
            contact_email="editor@acme.example.com",
            contact_name="Jane Doe",
            plan=TenantPlan.PROFESSIONAL,
        )

        assert tenant.trial_ends_at is None
        assert tenant.limits.max_users == 100
        assert tenant.is_trial_expired() is False

    def test_trial_expiry(self):
        tenant = Tenant.new(
            name="Acme Daily",
            domain="acme.example.com",
            contact_email="editor@acme.example.com",
            contact_name="Jane Doe",
        )

        assert tenant.is_trial_expired() is False
        assert tenant.is_trial_expired(utc_now() + timedelta(days=31)) is True

    def test_resource_handle_is_deterministic(self):
        tenant_id = "0f8fad5b-d9cb-469f-a165-70867728950e"
        assert resource_handle_for(tenant_id) == resource_handle_for(tenant_id)
        assert "-" not in resource_handle_for(tenant_id)

    def test_handle_prefix_is_configurable(self):
        config = PlatformConfig(default_tenant_db_prefix="cms_")
        assert config.get_tenant_db_name("a-b") == "cms_a_b"
        assert resource_handle_for("a-b", config) == "cms_a_b"

    def test_new_tenant_uses_given_config(self):
        config = PlatformConfig(default_tenant_db_prefix="cms_", trial_period_days=14)

        tenant = Tenant.new(
            name="Acme Daily",
            domain="acme.example.com",
            contact_email="editor@acme.example.com",
            contact_name="Jane Doe",
            config=config,
        )

        assert tenant.resource_handle == "cms_" + tenant.tenant_id.replace("-", "_")
        assert tenant.trial_ends_at - tenant.created_at == timedelta(days=14)

    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            (TenantStatus.PROVISIONING, TenantStatus.ACTIVE, True),
            (TenantStatus.ACTIVE, TenantStatus.SUSPENDED, True),
            (TenantStatus.SUSPENDED, TenantStatus.ACTIVE, True),
            (TenantStatus.SUSPENDED, TenantStatus.INACTIVE, True),
            (TenantStatus.PROVISIONING, TenantStatus.SUSPENDED, False),
            (TenantStatus.INACTIVE, TenantStatus.ACTIVE, False),
            (TenantStatus.INACTIVE, TenantStatus.PROVISIONING, False),
        ],
    )
    def test_state_machine(self, current, target, allowed):
        assert (current in ALLOWED_TRANSITIONS.get(target, frozenset())) is allowed


class TestCreateRequest:
    def test_normalizes_domain_and_email(self):
        request = make_request("News.Acme-Media.COM.", contact_email="Editor@Acme.com")

        assert request.domain == "news.acme-media.com"
        assert request.contact_email == "editor@acme.com"
        assert request.plan == TenantPlan.TRIAL

    @pytest.mark.parametrize(
        "domain", ["localhost", "-bad.example.com", "spaces in.example.com", "a..b.com", ""]
    )
    def test_rejects_bad_domains(self, domain):
        with pytest.raises(ValidationError):
            make_request(domain)

    def test_subdomain_rules(self):
        assert make_request(subdomain="Acme-News").subdomain == "acme-news"
        with pytest.raises(ValidationError):
            make_request(subdomain="acme_news")

    def test_name_is_trimmed(self):
        with pytest.raises(ValidationError):
            make_request(name="  a  ")

    def test_unknown_plan(self):
        with pytest.raises(ValidationError):
            TenantCreateRequest(
                name="Acme",
                domain="acme.example.com",
                contact_email="editor@acme.example.com",
                contact_name="Jane Doe",
                plan="platinum",
            )

    def test_normalize_domain_error_message(self):
        with pytest.raises(ValueError, match="Valid domain is required"):
            normalize_domain("nodots")

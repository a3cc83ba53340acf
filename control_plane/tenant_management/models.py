"""
Tenant Data Models

Defines the core tenant data structure stored in the tenant registry,
the lifecycle state machine and plan quotas.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from ..config import PlatformConfig, get_config


def utc_now() -> datetime:
    """Naive UTC timestamp, matching what the registry stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TenantStatus(str, Enum):
    """Tenant lifecycle status."""

    PROVISIONING = "provisioning"  # Being created
    ACTIVE = "active"  # Fully operational
    SUSPENDED = "suspended"  # Administratively disabled, resources kept
    INACTIVE = "inactive"  # Deprovisioned or being torn down


# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: dict[TenantStatus, frozenset[TenantStatus]] = {
    TenantStatus.ACTIVE: frozenset({TenantStatus.PROVISIONING, TenantStatus.SUSPENDED}),
    TenantStatus.SUSPENDED: frozenset({TenantStatus.ACTIVE}),
    TenantStatus.INACTIVE: frozenset(
        {TenantStatus.PROVISIONING, TenantStatus.ACTIVE, TenantStatus.SUSPENDED}
    ),
}


class TenantPlan(str, Enum):
    """Subscription plans."""

    TRIAL = "trial"
    BASIC = "basic"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class TenantLimits(BaseModel):
    """Resource quotas for a tenant."""

    max_users: int = Field(default=5, ge=0)
    max_articles: int = Field(default=100, ge=0)
    max_categories: int = Field(default=10, ge=0)
    max_tags: int = Field(default=50, ge=0)
    storage_mb: int = Field(default=500, ge=0)


PLAN_LIMITS: dict[TenantPlan, TenantLimits] = {
    TenantPlan.TRIAL: TenantLimits(
        max_users=5, max_articles=100, max_categories=10, max_tags=50, storage_mb=500
    ),
    TenantPlan.BASIC: TenantLimits(
        max_users=25, max_articles=1000, max_categories=50, max_tags=200, storage_mb=5000
    ),
    TenantPlan.PROFESSIONAL: TenantLimits(
        max_users=100, max_articles=10000, max_categories=200, max_tags=1000, storage_mb=25000
    ),
    TenantPlan.ENTERPRISE: TenantLimits(
        max_users=9999999,
        max_articles=9999999,
        max_categories=9999999,
        max_tags=9999999,
        storage_mb=9999999,
    ),
}


def limits_for_plan(plan: TenantPlan) -> TenantLimits:
    """Default quotas for a plan (a fresh copy)."""
    return PLAN_LIMITS[plan].model_copy()


class TenantFeatureFlags(BaseModel):
    """Optional CMS features enabled for the tenant."""

    analytics: bool = Field(default=False)
    seo: bool = Field(default=False)
    advanced_editor: bool = Field(default=False)
    api_access: bool = Field(default=False)


class TenantSettings(BaseModel):
    """Presentation settings for the tenant site."""

    theme: str = Field(default="default")
    language: str = Field(default="en")
    timezone: str = Field(default="UTC")
    features: TenantFeatureFlags = Field(default_factory=TenantFeatureFlags)


def resource_handle_for(tenant_id: str, config: Optional[PlatformConfig] = None) -> str:
    """Recompute the isolated store handle from the tenant id."""
    return (config or get_config()).get_tenant_db_name(tenant_id)


class Tenant(BaseModel):
    """
    Tenant model representing one customer environment.

    Stored in the platform registry (not in the tenant's own store).
    ``resource_handle`` is internal and excluded from API responses.
    """

    tenant_id: str = Field(..., description="Unique tenant identifier")
    name: str = Field(..., description="Tenant display name")

    # Domains
    domain: str = Field(..., description="Primary domain, globally unique")
    subdomain: Optional[str] = Field(default=None, description="Platform subdomain, unique if set")

    # Contact
    contact_email: str
    contact_name: str

    # Lifecycle
    status: TenantStatus = Field(default=TenantStatus.PROVISIONING)
    status_reason: Optional[str] = Field(default=None)

    # Plan
    plan: TenantPlan = Field(default=TenantPlan.TRIAL)
    limits: TenantLimits = Field(default_factory=TenantLimits)
    settings: TenantSettings = Field(default_factory=TenantSettings)
    trial_ends_at: Optional[datetime] = Field(default=None)

    # Isolated store
    resource_handle: str = Field(..., description="Deterministic store identifier")

    # Metadata
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_activity: Optional[datetime] = Field(default=None)
    created_by: Optional[str] = Field(default=None)

    @classmethod
    def new(
        cls,
        name: str,
        domain: str,
        contact_email: str,
        contact_name: str,
        plan: TenantPlan = TenantPlan.TRIAL,
        subdomain: Optional[str] = None,
        created_by: Optional[str] = None,
        trial_period_days: Optional[int] = None,
        config: Optional[PlatformConfig] = None,
    ) -> "Tenant":
        """
        Build a tenant in ``provisioning`` state.

        Computes the id, resource handle, plan quotas and, for trial plans,
        the trial expiry. The expiry is fixed here and never recomputed.
        """
        tenant_id = str(uuid4())
        now = utc_now()
        config = config or get_config()
        trial_days = trial_period_days or config.trial_period_days

        return cls(
            tenant_id=tenant_id,
            name=name,
            domain=domain,
            subdomain=subdomain,
            contact_email=contact_email,
            contact_name=contact_name,
            status=TenantStatus.PROVISIONING,
            plan=plan,
            limits=limits_for_plan(plan),
            trial_ends_at=now + timedelta(days=trial_days) if plan == TenantPlan.TRIAL else None,
            resource_handle=resource_handle_for(tenant_id, config),
            created_at=now,
            updated_at=now,
            last_activity=now,
            created_by=created_by,
        )

    def is_trial_expired(self, now: Optional[datetime] = None) -> bool:
        """Check whether a trial tenant is past its expiry."""
        if self.plan != TenantPlan.TRIAL or self.trial_ends_at is None:
            return False
        return (now or utc_now()) > self.trial_ends_at


class AdminCredentials(BaseModel):
    """One-time bootstrap credentials, returned once and never persisted in plaintext."""

    email: str
    temporary_password: str
    note: str = Field(default="Please change password after first login")


class SetupDetails(BaseModel):
    """Which provisioning steps completed."""

    domain: str
    record_created: bool = Field(default=False)
    database_created: bool = Field(default=False)
    admin_created: bool = Field(default=False)
    activated: bool = Field(default=False)
    dns_configured: bool = Field(default=False)
    ssl_enabled: bool = Field(default=False)
    routing_configured: bool = Field(default=False)
    network_state: str = Field(
        default="deferred", description="configured, deferred or failed"
    )
    network_error: Optional[str] = Field(default=None)


class ProvisioningResult(BaseModel):
    """Outcome of a successful provisioning run."""

    tenant: Tenant
    setup_details: SetupDetails
    admin_credentials: AdminCredentials


class DeprovisionResult(BaseModel):
    """Outcome of a deprovisioning run."""

    tenant_id: str
    already_absent: bool = Field(default=False)
    store_removed: bool = Field(default=False)
    network_teardown_ok: bool = Field(default=True)
    domain: Optional[str] = Field(default=None)

"""
Tenant Management API Schemas

Request and response models for tenant management endpoints.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ..provisioners.base import ProbeResult, ProbeStatus
from .models import (
    AdminCredentials,
    SetupDetails,
    Tenant,
    TenantLimits,
    TenantPlan,
    TenantSettings,
    TenantStatus,
)

DOMAIN_PATTERN = re.compile(r"^(?=.{4,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")
SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,61}[a-z0-9])$")


def normalize_domain(value: str) -> str:
    """Lowercase and validate a fully qualified domain name."""
    domain = value.strip().lower().rstrip(".")
    if not DOMAIN_PATTERN.match(domain):
        raise ValueError("Valid domain is required")
    return domain


class TenantCreateRequest(BaseModel):
    """Request model for creating a new tenant."""

    name: str = Field(..., min_length=2, max_length=100, description="Tenant display name")

    domain: str = Field(..., description="Primary domain, e.g. news.example.com")
    subdomain: Optional[str] = Field(
        default=None, min_length=3, max_length=63, description="Optional platform subdomain"
    )

    contact_email: EmailStr = Field(..., description="Primary contact email")
    contact_name: str = Field(..., min_length=2, max_length=100)

    plan: TenantPlan = Field(default=TenantPlan.TRIAL)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Acme Daily",
                "domain": "acme.example.com",
                "contact_email": "editor@acme.example.com",
                "contact_name": "Jane Doe",
                "plan": "trial",
            }
        }
    )

    @field_validator("name", "contact_name")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("must be at least 2 characters")
        return v

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        return normalize_domain(v)

    @field_validator("subdomain")
    @classmethod
    def validate_subdomain(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if not SUBDOMAIN_PATTERN.match(v):
            raise ValueError("Subdomain may contain lowercase letters, digits and hyphens")
        return v

    @field_validator("contact_email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class TenantDomainUpdateRequest(BaseModel):
    """Request model for moving a tenant to a new domain."""

    new_domain: str = Field(..., description="New primary domain")

    @field_validator("new_domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        return normalize_domain(v)


class TenantResponse(BaseModel):
    """Response model for tenant data. The resource handle is never exposed."""

    tenant_id: str
    name: str
    domain: str
    subdomain: Optional[str]

    contact_email: str
    contact_name: str

    status: TenantStatus
    status_reason: Optional[str]

    plan: TenantPlan
    limits: TenantLimits
    settings: TenantSettings
    trial_ends_at: Optional[datetime]

    created_at: datetime
    updated_at: datetime
    last_activity: Optional[datetime]

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "TenantResponse":
        return cls(**tenant.model_dump(exclude={"resource_handle", "created_by"}))


class TenantListResponse(BaseModel):
    """Response model for listing tenants."""

    tenants: list[TenantResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class AccessInfo(BaseModel):
    """Where the new tenant site can be reached."""

    domain: str
    admin_panel: str
    api_endpoint: str

    @classmethod
    def for_domain(cls, domain: str) -> "AccessInfo":
        return cls(
            domain=domain,
            admin_panel=f"https://{domain}/admin",
            api_endpoint=f"https://{domain}/api",
        )


class TenantCreateResponse(BaseModel):
    """Response model for a provisioned tenant."""

    success: bool = True
    message: str = "Tenant created and provisioned successfully"
    tenant: TenantResponse
    setup_details: SetupDetails
    admin_credentials: AdminCredentials
    access_info: AccessInfo


class TenantDeleteResponse(BaseModel):
    """Acknowledgement of an idempotent delete."""

    success: bool = True
    tenant_id: str
    already_absent: bool
    network_teardown_ok: bool = True


class DomainAvailabilityResponse(BaseModel):
    """Availability hint; the registry insert remains authoritative."""

    domain: str
    available: bool


class BulkAction(str, Enum):
    """Actions accepted by the bulk endpoint."""

    SUSPEND = "suspend"
    ACTIVATE = "activate"
    DELETE = "delete"


class BulkOperationRequest(BaseModel):
    """Request model for bulk tenant operations."""

    action: BulkAction
    tenant_ids: list[str] = Field(..., description="Tenant ids, processed independently")


class BulkItemResult(BaseModel):
    """Outcome for one tenant id of a bulk operation."""

    tenant_id: str
    success: bool
    result: Optional[dict[str, Any]] = Field(default=None)
    error: Optional[str] = Field(default=None)
    code: Optional[str] = Field(default=None)


class BulkOperationResponse(BaseModel):
    """Order-preserving bulk results; partial failure is data, not an error."""

    success: bool
    code: Optional[str] = Field(default=None)
    message: str
    action: BulkAction
    results: list[BulkItemResult]
    succeeded: int
    failed: int


class TenantStatusReport(BaseModel):
    """Composite per-subsystem status for one tenant."""

    tenant_id: str
    domain: str
    tenant_status: TenantStatus
    overall: ProbeStatus
    services: dict[str, ProbeResult]
    checked_at: datetime


class UsageCounters(BaseModel):
    users: int = 0
    articles: int = 0
    categories: int = 0
    tags: int = 0


class UsagePercentage(BaseModel):
    users: int = 0
    articles: int = 0
    categories: int = 0
    tags: int = 0


class ContentStats(BaseModel):
    published_articles: int = 0
    draft_articles: int = 0
    total_views: int = 0
    recent_activity: int = 0


class PlanInfo(BaseModel):
    current_plan: TenantPlan
    status: TenantStatus
    trial_ends_at: Optional[datetime]
    trial_expired: bool


class TenantAnalytics(BaseModel):
    """Usage against quota plus content statistics."""

    tenant_id: str
    name: str
    domain: str
    usage: UsageCounters
    limits: TenantLimits
    usage_percentage: UsagePercentage
    content_stats: ContentStats
    plan_info: PlanInfo
    store_error: Optional[str] = Field(default=None)
    generated_at: datetime

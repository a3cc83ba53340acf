"""
Tenant Management API Router

REST API endpoints for tenant lifecycle, status and usage.
Errors are raised as ``ControlPlaneError`` and rendered by the app's
exception handlers.
"""

import math
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from structlog import get_logger

from ..api_gateway.services import ControlPlaneServices, get_services
from ..auth.dependencies import require_platform_admin
from ..exceptions import NotFoundError, ValidationError
from .models import TenantPlan, TenantStatus
from .schema import (
    AccessInfo,
    BulkOperationRequest,
    BulkOperationResponse,
    DomainAvailabilityResponse,
    TenantAnalytics,
    TenantCreateRequest,
    TenantCreateResponse,
    TenantDeleteResponse,
    TenantDomainUpdateRequest,
    TenantListResponse,
    TenantResponse,
    TenantStatusReport,
    normalize_domain,
)

logger = get_logger()

router = APIRouter(
    prefix="/platform/tenants",
    tags=["Tenant Management"],
    dependencies=[Depends(require_platform_admin)],
)


def operator_id(claims: Optional[dict[str, Any]]) -> Optional[str]:
    return claims.get("sub") if claims else None


@router.post(
    "/",
    response_model=TenantCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create new tenant",
    description="Provision a new tenant: registry record, isolated store, admin identity, network",
)
async def create_tenant(
    request: TenantCreateRequest,
    services: ControlPlaneServices = Depends(get_services),
    claims: Optional[dict[str, Any]] = Depends(require_platform_admin),
) -> TenantCreateResponse:
    """
    Create and provision a new tenant.

    The temporary admin password is returned in this response only.
    """
    logger.info("creating_tenant", domain=request.domain, name=request.name)

    result = await services.orchestrator.provision_tenant(request, created_by=operator_id(claims))

    return TenantCreateResponse(
        tenant=TenantResponse.from_tenant(result.tenant),
        setup_details=result.setup_details,
        admin_credentials=result.admin_credentials,
        access_info=AccessInfo.for_domain(result.tenant.domain),
    )


@router.get(
    "/",
    response_model=TenantListResponse,
    summary="List tenants",
    description="List tenants with optional filtering and pagination",
)
async def list_tenants(
    status_filter: Optional[TenantStatus] = Query(None, alias="status"),
    plan: Optional[TenantPlan] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    services: ControlPlaneServices = Depends(get_services),
) -> TenantListResponse:
    """List tenants, newest first."""
    skip = (page - 1) * page_size

    tenants = await services.registry.list_tenants(
        status=status_filter, plan=plan, search=search, skip=skip, limit=page_size
    )
    total = await services.registry.count_tenants(status=status_filter, plan=plan, search=search)

    return TenantListResponse(
        tenants=[TenantResponse.from_tenant(t) for t in tenants],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


@router.get(
    "/check/domain/{domain}",
    response_model=DomainAvailabilityResponse,
    summary="Check domain availability",
)
async def check_domain(
    domain: str,
    services: ControlPlaneServices = Depends(get_services),
) -> DomainAvailabilityResponse:
    """Availability hint only; creation re-checks atomically."""
    try:
        domain = normalize_domain(domain)
    except ValueError as e:
        raise ValidationError(str(e), domain=domain) from e
    existing = await services.registry.get_by_domain(domain)
    return DomainAvailabilityResponse(domain=domain, available=existing is None)


@router.post(
    "/bulk",
    response_model=BulkOperationResponse,
    summary="Bulk tenant operation",
    description="Suspend, activate or delete many tenants; failures are reported per tenant",
)
async def bulk_operation(
    request: BulkOperationRequest,
    services: ControlPlaneServices = Depends(get_services),
    claims: Optional[dict[str, Any]] = Depends(require_platform_admin),
) -> BulkOperationResponse:
    """Apply one action to many tenants."""
    return await services.bulk.execute(
        request.action, request.tenant_ids, performed_by=operator_id(claims)
    )


@router.get(
    "/{tenant_id}",
    response_model=TenantResponse,
    summary="Get tenant by ID",
)
async def get_tenant(
    tenant_id: str,
    services: ControlPlaneServices = Depends(get_services),
) -> TenantResponse:
    """Get tenant details by ID."""
    tenant = await services.registry.get(tenant_id)

    if not tenant:
        raise NotFoundError(f"Tenant '{tenant_id}' not found", tenant_id=tenant_id)

    return TenantResponse.from_tenant(tenant)


@router.patch(
    "/{tenant_id}/domain",
    response_model=TenantResponse,
    summary="Change tenant domain",
    description="Configure the new domain first; the old one serves until the swap commits",
)
async def update_tenant_domain(
    tenant_id: str,
    request: TenantDomainUpdateRequest,
    services: ControlPlaneServices = Depends(get_services),
) -> TenantResponse:
    """Move a tenant to a new domain."""
    tenant = await services.orchestrator.update_tenant_domain(tenant_id, request.new_domain)
    return TenantResponse.from_tenant(tenant)


@router.delete(
    "/{tenant_id}",
    response_model=TenantDeleteResponse,
    summary="Delete tenant",
    description="Deprovision a tenant. Idempotent: deleting a missing tenant succeeds",
)
async def delete_tenant(
    tenant_id: str,
    services: ControlPlaneServices = Depends(get_services),
) -> TenantDeleteResponse:
    """Deprovision a tenant and remove its record."""
    result = await services.orchestrator.deprovision_tenant(tenant_id, missing_ok=True)
    return TenantDeleteResponse(
        tenant_id=tenant_id,
        already_absent=result.already_absent,
        network_teardown_ok=result.network_teardown_ok,
    )


@router.get(
    "/{tenant_id}/status",
    response_model=TenantStatusReport,
    summary="Tenant status",
    description="Certificate, routing, DNS, liveness and store checks, run concurrently",
)
async def get_tenant_status(
    tenant_id: str,
    services: ControlPlaneServices = Depends(get_services),
) -> TenantStatusReport:
    return await services.status.get_tenant_status(tenant_id)


@router.get(
    "/{tenant_id}/analytics",
    response_model=TenantAnalytics,
    summary="Tenant usage analytics",
)
async def get_tenant_analytics(
    tenant_id: str,
    services: ControlPlaneServices = Depends(get_services),
) -> TenantAnalytics:
    return await services.analytics.get_tenant_analytics(tenant_id)


@router.post(
    "/{tenant_id}/suspend",
    response_model=TenantResponse,
    summary="Suspend tenant",
)
async def suspend_tenant(
    tenant_id: str,
    services: ControlPlaneServices = Depends(get_services),
) -> TenantResponse:
    tenant = await services.orchestrator.suspend_tenant(tenant_id)
    return TenantResponse.from_tenant(tenant)


@router.post(
    "/{tenant_id}/activate",
    response_model=TenantResponse,
    summary="Activate tenant",
)
async def activate_tenant(
    tenant_id: str,
    services: ControlPlaneServices = Depends(get_services),
) -> TenantResponse:
    tenant = await services.orchestrator.activate_tenant(tenant_id)
    return TenantResponse.from_tenant(tenant)


@router.post(
    "/{tenant_id}/activity",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Record tenant activity",
    description="Called by tenant sites to update last activity",
)
async def record_activity(
    tenant_id: str,
    services: ControlPlaneServices = Depends(get_services),
) -> None:
    if not await services.registry.touch_activity(tenant_id):
        raise NotFoundError(f"Tenant '{tenant_id}' not found", tenant_id=tenant_id)

"""
Tenant Management Module

Tenant records, lifecycle orchestration, status and usage reporting.
"""

from .models import Tenant, TenantPlan, TenantStatus
from .schema import (
    BulkAction,
    BulkOperationRequest,
    BulkOperationResponse,
    TenantCreateRequest,
    TenantResponse,
)

__all__ = [
    "Tenant",
    "TenantPlan",
    "TenantStatus",
    "BulkAction",
    "BulkOperationRequest",
    "BulkOperationResponse",
    "TenantCreateRequest",
    "TenantResponse",
]

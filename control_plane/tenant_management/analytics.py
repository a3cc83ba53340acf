"""
Tenant Usage Analytics

Reads usage counters from the tenant's isolated store and compares them
with the plan quotas. An unreachable store yields a zeroed payload with
``store_error`` set instead of failing the request.
"""

import math
from datetime import timedelta
from typing import Optional

from structlog import get_logger

from ..config import PlatformConfig, get_config
from ..exceptions import NotFoundError
from ..provisioners.base import ResourceProvisioner, StoreUsage
from ..shared_services.timeouts import with_timeout
from .models import utc_now
from .registry import TenantRegistry
from .schema import (
    ContentStats,
    PlanInfo,
    TenantAnalytics,
    UsageCounters,
    UsagePercentage,
)

logger = get_logger()

RECENT_ACTIVITY_WINDOW = timedelta(days=30)


def usage_percent(used: int, limit: int) -> int:
    """Whole percent of quota used, rounded half up. A zero limit is 0%."""
    if limit <= 0:
        return 0
    return math.floor(used * 100 / limit + 0.5)


class TenantAnalyticsService:
    """Usage and quota reporting for tenants."""

    def __init__(
        self,
        registry: TenantRegistry,
        resources: ResourceProvisioner,
        config: Optional[PlatformConfig] = None,
    ):
        self.registry = registry
        self.resources = resources
        self.config = config or get_config()

    async def get_tenant_analytics(self, tenant_id: str) -> TenantAnalytics:
        """
        Build the analytics payload for a tenant.

        Raises:
            NotFoundError: Unknown tenant
        """
        tenant = await with_timeout(
            self.registry.get(tenant_id),
            self.config.registry_operation_timeout_seconds,
            "registry lookup",
        )
        if not tenant:
            raise NotFoundError(f"Tenant '{tenant_id}' not found", tenant_id=tenant_id)

        now = utc_now()
        store_error = None
        try:
            usage = await with_timeout(
                self.resources.collect_usage(tenant.resource_handle, now - RECENT_ACTIVITY_WINDOW),
                self.config.store_operation_timeout_seconds,
                "usage collection",
            )
        except Exception as e:
            logger.warning("tenant_usage_unavailable", tenant_id=tenant_id, error=str(e))
            usage = StoreUsage()
            store_error = (
                f"Tenant store unavailable: {e}"
                if self.config.expose_error_details
                else "Tenant store unavailable"
            )

        limits = tenant.limits
        return TenantAnalytics(
            tenant_id=tenant.tenant_id,
            name=tenant.name,
            domain=tenant.domain,
            usage=UsageCounters(
                users=usage.users,
                articles=usage.articles,
                categories=usage.categories,
                tags=usage.tags,
            ),
            limits=limits,
            usage_percentage=UsagePercentage(
                users=usage_percent(usage.users, limits.max_users),
                articles=usage_percent(usage.articles, limits.max_articles),
                categories=usage_percent(usage.categories, limits.max_categories),
                tags=usage_percent(usage.tags, limits.max_tags),
            ),
            content_stats=ContentStats(
                published_articles=usage.published_articles,
                draft_articles=usage.draft_articles,
                total_views=usage.total_views,
                recent_activity=usage.recent_articles,
            ),
            plan_info=PlanInfo(
                current_plan=tenant.plan,
                status=tenant.status,
                trial_ends_at=tenant.trial_ends_at,
                trial_expired=tenant.is_trial_expired(now),
            ),
            store_error=store_error,
            generated_at=now,
        )

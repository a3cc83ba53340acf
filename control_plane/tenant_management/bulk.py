"""
Bulk Tenant Operations

Applies suspend, activate or delete to many tenants. Each id is processed
independently with bounded concurrency; results keep the input order.
"""

import asyncio
from typing import Optional

from structlog import get_logger

from ..config import PlatformConfig, get_config
from ..exceptions import ControlPlaneError, ErrorCode, ValidationError
from .provisioning import ProvisioningOrchestrator
from .schema import BulkAction, BulkItemResult, BulkOperationResponse

logger = get_logger()


class BulkOperationExecutor:
    """Per-tenant isolated bulk operations."""

    def __init__(
        self,
        orchestrator: ProvisioningOrchestrator,
        config: Optional[PlatformConfig] = None,
    ):
        self.orchestrator = orchestrator
        self.config = config or get_config()

    async def execute(
        self,
        action: BulkAction,
        tenant_ids: list[str],
        deadline: Optional[float] = None,
        performed_by: Optional[str] = None,
    ) -> BulkOperationResponse:
        """
        Apply ``action`` to every id.

        Args:
            action: suspend, activate or delete
            tenant_ids: Tenant ids in the order results are returned
            deadline: Overall budget; unfinished entries report DEADLINE_EXCEEDED
            performed_by: Operator identifier for the audit log

        Returns:
            One result per input position

        Raises:
            ValidationError: Unknown action, empty id list or too many ids
        """
        try:
            action = BulkAction(action)
        except ValueError as e:
            raise ValidationError(f"Invalid bulk action: {action}", action=action) from e
        if not tenant_ids:
            raise ValidationError("Tenant IDs array is required")
        if len(tenant_ids) > self.config.bulk_max_ids:
            raise ValidationError(
                f"At most {self.config.bulk_max_ids} tenant IDs per bulk operation",
                count=len(tenant_ids),
            )

        budget = deadline if deadline is not None else self.config.bulk_deadline_seconds
        semaphore = asyncio.Semaphore(self.config.bulk_max_concurrency)
        results: list[Optional[BulkItemResult]] = [None] * len(tenant_ids)

        async def worker(index: int, tenant_id: str) -> None:
            async with semaphore:
                results[index] = await self._apply(action, tenant_id)

        tasks = [
            asyncio.create_task(worker(index, tenant_id))
            for index, tenant_id in enumerate(tenant_ids)
        ]
        try:
            await asyncio.wait(tasks, timeout=budget)
        finally:
            outstanding = [task for task in tasks if not task.done()]
            for task in outstanding:
                task.cancel()
            if outstanding:
                await asyncio.gather(*outstanding, return_exceptions=True)

        for index, tenant_id in enumerate(tenant_ids):
            if results[index] is None:
                results[index] = BulkItemResult(
                    tenant_id=tenant_id,
                    success=False,
                    error="deadline exceeded",
                    code=ErrorCode.DEADLINE_EXCEEDED.value,
                )

        succeeded = sum(1 for result in results if result.success)
        failed = len(results) - succeeded

        logger.info(
            "bulk_tenant_operation",
            action=action.value,
            tenant_count=len(tenant_ids),
            succeeded=succeeded,
            failed=failed,
            performed_by=performed_by,
        )

        return BulkOperationResponse(
            success=failed == 0,
            code=ErrorCode.PARTIAL_FAILURE.value if failed else None,
            message=f"Bulk {action.value} operation completed",
            action=action,
            results=results,
            succeeded=succeeded,
            failed=failed,
        )

    async def _apply(self, action: BulkAction, tenant_id: str) -> BulkItemResult:
        """Run the action for one id, capturing any failure as data."""
        try:
            if action == BulkAction.SUSPEND:
                tenant = await self.orchestrator.suspend_tenant(tenant_id)
                payload = {"status": tenant.status.value}
            elif action == BulkAction.ACTIVATE:
                tenant = await self.orchestrator.activate_tenant(tenant_id)
                payload = {"status": tenant.status.value}
            else:
                outcome = await self.orchestrator.deprovision_tenant(tenant_id, missing_ok=False)
                payload = outcome.model_dump(include={"store_removed", "network_teardown_ok"})
        except ControlPlaneError as e:
            return BulkItemResult(
                tenant_id=tenant_id, success=False, error=e.message, code=e.code.value
            )
        except Exception as e:
            logger.error(
                "bulk_item_unexpected_error", tenant_id=tenant_id, action=action.value, error=str(e)
            )
            message = str(e) if self.config.expose_error_details else "Internal error"
            return BulkItemResult(
                tenant_id=tenant_id,
                success=False,
                error=message,
                code=ErrorCode.INTERNAL_ERROR.value,
            )

        return BulkItemResult(tenant_id=tenant_id, success=True, result=payload)

"""
Tenant Provisioning Orchestrator

Handles the complete lifecycle workflow for tenants:
1. Create tenant record in the registry (status ``provisioning``)
2. Create the isolated tenant store and apply its schema
3. Bootstrap the default admin identity with a temporary secret
4. Mark the tenant ``active``
5. Configure DNS, TLS and routing (best-effort unless required)

A failure in steps 2-4 (or 5 when network is required) runs compensation
in reverse order before the error is surfaced.
"""

import asyncio
import secrets
import string
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from structlog import get_logger
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from ..config import PlatformConfig, get_config
from ..exceptions import (
    CollaboratorUnavailableError,
    ConflictError,
    ControlPlaneError,
    ErrorCode,
    NetworkConfigurationError,
    NotFoundError,
    ProvisioningError,
)
from ..provisioners.base import NetworkProvisioner, ResourceProvisioner
from ..shared_services.timeouts import DeadlineExceededError, with_timeout
from .models import (
    ALLOWED_TRANSITIONS,
    AdminCredentials,
    DeprovisionResult,
    ProvisioningResult,
    SetupDetails,
    Tenant,
    TenantStatus,
    resource_handle_for,
    utc_now,
)
from .registry import TenantRegistry
from .schema import TenantCreateRequest

logger = get_logger()

SECRET_SYMBOLS = "!@#$%^&*"
SECRET_ALPHABET = string.ascii_letters + string.digits + string.punctuation
MIN_SECRET_LENGTH = 12

# Administrative toggles are idempotent; deprovisioning may be retried.
SUSPEND_FROM = ALLOWED_TRANSITIONS[TenantStatus.SUSPENDED] | {TenantStatus.SUSPENDED}
ACTIVATE_FROM = frozenset({TenantStatus.SUSPENDED, TenantStatus.ACTIVE})
DEPROVISION_FROM = ALLOWED_TRANSITIONS[TenantStatus.INACTIVE] | {TenantStatus.INACTIVE}


def generate_temporary_secret(length: int = MIN_SECRET_LENGTH) -> str:
    """
    Generate a temporary admin secret.

    At least one lowercase letter, uppercase letter, digit and symbol;
    the rest drawn uniformly from letters, digits and punctuation, then
    shuffled so the required characters have no fixed position.
    """
    if length < MIN_SECRET_LENGTH:
        raise ValueError(f"Secret length must be at least {MIN_SECRET_LENGTH}")

    rng = secrets.SystemRandom()
    chars = [
        rng.choice(string.ascii_lowercase),
        rng.choice(string.ascii_uppercase),
        rng.choice(string.digits),
        rng.choice(SECRET_SYMBOLS),
    ]
    chars.extend(rng.choice(SECRET_ALPHABET) for _ in range(length - len(chars)))
    rng.shuffle(chars)
    return "".join(chars)


@dataclass
class ProvisioningRun:
    """Progress of one provisioning call, read by compensation."""

    tenant: Tenant
    setup: SetupDetails
    phase: str = "record"
    record_attempted: bool = False
    store_attempted: bool = False
    network_attempted: bool = False
    residual_resources: list[str] = field(default_factory=list)


class ProvisioningOrchestrator:
    """Drives create, domain update and deprovision workflows."""

    # tests swap this for tenacity.wait_none()
    compensation_wait = wait_exponential(multiplier=0.5, max=4)

    def __init__(
        self,
        registry: TenantRegistry,
        resources: ResourceProvisioner,
        network: NetworkProvisioner,
        config: Optional[PlatformConfig] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            registry: Tenant registry (source of truth)
            resources: Isolated store provisioner
            network: DNS / TLS / routing provisioner
            config: Platform configuration
        """
        self.registry = registry
        self.resources = resources
        self.network = network
        self.config = config or get_config()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def provision_tenant(
        self,
        request: TenantCreateRequest,
        created_by: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> ProvisioningResult:
        """
        Provision a new tenant with complete setup.

        Args:
            request: Tenant creation request
            created_by: Operator creating the tenant
            deadline: Overall time budget in seconds

        Returns:
            Provisioning result with one-time admin credentials

        Raises:
            ConflictError: Domain or subdomain already registered
            ProvisioningError: A step failed; compensation has already run
        """
        logger.info("starting_tenant_provisioning", domain=request.domain, plan=request.plan.value)

        tenant = Tenant.new(
            name=request.name,
            domain=request.domain,
            subdomain=request.subdomain,
            contact_email=request.contact_email,
            contact_name=request.contact_name,
            plan=request.plan,
            created_by=created_by,
            config=self.config,
        )
        run = ProvisioningRun(tenant=tenant, setup=SetupDetails(domain=tenant.domain))
        secret = generate_temporary_secret(self.config.admin_secret_length)
        budget = deadline if deadline is not None else self.config.provisioning_deadline_seconds

        try:
            await asyncio.wait_for(self._run_steps(run, secret), timeout=budget)
        except ConflictError as e:
            if run.phase == "record":
                # lost the insert race; nothing was created
                raise
            # activation lost to a concurrent lifecycle change
            await self._compensate(run)
            raise self._wrap_failure(run, e) from e
        except asyncio.TimeoutError as e:
            logger.error(
                "tenant_provisioning_deadline_exceeded", tenant_id=tenant.tenant_id, phase=run.phase
            )
            await self._compensate(run)
            raise self._wrap_failure(
                run, DeadlineExceededError(f"Provisioning exceeded {budget:g}s", cause=e)
            ) from e
        except ProvisioningError as e:
            # required network step failed
            await self._compensate(run)
            e.residual_resources.extend(run.residual_resources)
            raise
        except (Exception, asyncio.CancelledError) as e:
            logger.error(
                "tenant_provisioning_failed",
                tenant_id=tenant.tenant_id,
                phase=run.phase,
                error=str(e),
            )
            await self._compensate(run)
            if isinstance(e, asyncio.CancelledError):
                raise
            raise self._wrap_failure(run, e) from e

        logger.info(
            "tenant_provisioning_completed",
            tenant_id=tenant.tenant_id,
            domain=tenant.domain,
            network_state=run.setup.network_state,
        )
        return ProvisioningResult(
            tenant=run.tenant,
            setup_details=run.setup,
            admin_credentials=AdminCredentials(
                email=tenant.contact_email, temporary_password=secret
            ),
        )

    async def _ensure_available(self, domain: str, subdomain: Optional[str]) -> None:
        """Existence pre-check. The registry insert remains authoritative."""
        timeout = self.config.registry_operation_timeout_seconds
        if await with_timeout(self.registry.get_by_domain(domain), timeout, "registry lookup"):
            raise ConflictError(
                f"Domain '{domain}' is already registered",
                code=ErrorCode.DOMAIN_EXISTS,
                field="domain",
            )
        if subdomain and await with_timeout(
            self.registry.get_by_subdomain(subdomain), timeout, "registry lookup"
        ):
            raise ConflictError(
                f"Subdomain '{subdomain}' is already registered",
                code=ErrorCode.DOMAIN_EXISTS,
                field="subdomain",
            )

    async def _run_steps(self, run: ProvisioningRun, secret: str) -> None:
        tenant = run.tenant
        config = self.config

        # Step 1: registry row in ``provisioning``
        run.phase = "record"
        await self._ensure_available(tenant.domain, tenant.subdomain)
        run.record_attempted = True
        await with_timeout(
            self.registry.insert(tenant),
            config.registry_operation_timeout_seconds,
            "registry insert",
        )
        run.setup.record_created = True
        logger.info("created_tenant_record", tenant_id=tenant.tenant_id)

        # Step 2: isolated store
        run.phase = "store"
        run.store_attempted = True
        await with_timeout(
            self.resources.create_store(tenant.resource_handle),
            config.store_operation_timeout_seconds,
            "store creation",
        )
        run.setup.database_created = True
        logger.info("created_tenant_store", tenant_id=tenant.tenant_id)

        # Step 3: bootstrap admin identity
        run.phase = "identity"
        await with_timeout(
            self.resources.bootstrap_admin_identity(
                tenant.resource_handle, tenant.contact_email, secret, tenant.contact_name
            ),
            config.store_operation_timeout_seconds,
            "admin bootstrap",
        )
        run.setup.admin_created = True
        logger.info("created_tenant_admin", tenant_id=tenant.tenant_id)

        # Step 4: activate (compare-and-set from provisioning)
        run.phase = "activation"
        run.tenant = await with_timeout(
            self.registry.transition_status(
                tenant.tenant_id,
                TenantStatus.ACTIVE,
                {TenantStatus.PROVISIONING},
                reason="Provisioning completed successfully",
            ),
            config.registry_operation_timeout_seconds,
            "registry activation",
        )
        run.setup.activated = True
        logger.info("activated_tenant", tenant_id=tenant.tenant_id)

        # Step 5: network
        if not config.enable_network_provisioning:
            logger.info("network_provisioning_deferred", tenant_id=tenant.tenant_id)
            return

        run.phase = "network"
        run.network_attempted = True
        try:
            await with_timeout(
                self.network.configure_routing(tenant.domain),
                config.network_operation_timeout_seconds,
                "network configuration",
            )
        except (NetworkConfigurationError, CollaboratorUnavailableError) as e:
            subsystem = getattr(e, "subsystem", None)
            self._record_network_failure(run.setup, subsystem, str(e))
            logger.warning(
                "network_provisioning_failed",
                tenant_id=tenant.tenant_id,
                domain=tenant.domain,
                subsystem=subsystem,
                error=str(e),
            )
            if not config.require_network_on_create:
                return
            code = self._network_code(e)
            raise ProvisioningError(
                self._network_message(subsystem),
                phase="network",
                code=code,
                subsystem=subsystem,
                cause=e,
                tenant_id=tenant.tenant_id,
            ) from e

        run.setup.dns_configured = True
        run.setup.ssl_enabled = True
        run.setup.routing_configured = True
        run.setup.network_state = "configured"

    @staticmethod
    def _record_network_failure(setup: SetupDetails, subsystem: Optional[str], error: str) -> None:
        # configure_routing runs dns, tls, routing in order
        setup.dns_configured = subsystem in ("tls", "routing")
        setup.ssl_enabled = subsystem == "routing"
        setup.routing_configured = False
        setup.network_state = "failed"
        setup.network_error = error

    @staticmethod
    def _network_code(error: Exception) -> ErrorCode:
        if isinstance(error, NetworkConfigurationError):
            return error.code
        return ErrorCode.COLLABORATOR_UNAVAILABLE

    @staticmethod
    def _network_message(subsystem: Optional[str]) -> str:
        return {
            "dns": "DNS configuration failed. Please verify domain ownership.",
            "tls": "SSL certificate generation failed. Please try again.",
            "routing": "Routing configuration failed.",
        }.get(subsystem, "Network configuration timed out.")

    def _wrap_failure(self, run: ProvisioningRun, error: BaseException) -> ProvisioningError:
        if isinstance(error, DeadlineExceededError):
            code = ErrorCode.DEADLINE_EXCEEDED
        elif isinstance(error, CollaboratorUnavailableError):
            code = ErrorCode.COLLABORATOR_UNAVAILABLE
        else:
            code = ErrorCode.CREATION_ERROR
        return ProvisioningError(
            f"Tenant provisioning failed during {run.phase}",
            phase=run.phase,
            code=code,
            residual_resources=list(run.residual_resources),
            cause=error,
            tenant_id=run.tenant.tenant_id,
        )

    async def _compensate(self, run: ProvisioningRun) -> None:
        """
        Undo completed steps in reverse order.

        Never raises; anything left behind is logged as a residual resource
        and recorded on the run.
        """
        tenant = run.tenant
        logger.warning(
            "starting_provisioning_compensation", tenant_id=tenant.tenant_id, phase=run.phase
        )

        if run.network_attempted:
            try:
                await with_timeout(
                    self.network.teardown_routing(tenant.domain),
                    self.config.compensation_timeout_seconds,
                    "network teardown",
                )
            except Exception as e:
                self._residual(run, f"network:{tenant.domain}", e)

        if run.store_attempted:
            try:
                await self._destroy_store_with_retry(tenant.resource_handle)
            except Exception as e:
                self._residual(run, f"store:{tenant.resource_handle}", e)

        if run.record_attempted:
            try:
                await with_timeout(
                    self.registry.delete(tenant.tenant_id),
                    self.config.compensation_timeout_seconds,
                    "registry delete",
                )
            except Exception as e:
                self._residual(run, f"record:{tenant.tenant_id}", e)

        logger.info(
            "provisioning_compensation_completed",
            tenant_id=tenant.tenant_id,
            residual_resources=run.residual_resources,
        )

    async def _destroy_store_with_retry(self, handle: str) -> bool:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.compensation_max_attempts),
            wait=self.compensation_wait,
            reraise=True,
        ):
            with attempt:
                return await with_timeout(
                    self.resources.destroy_store(handle),
                    self.config.compensation_timeout_seconds,
                    "store destroy",
                )
        return False

    def _residual(self, run: ProvisioningRun, resource: str, error: Exception) -> None:
        run.residual_resources.append(resource)
        logger.warning(
            "residual_resource_warning",
            tenant_id=run.tenant.tenant_id,
            resource=resource,
            resource_handle=run.tenant.resource_handle,
            domain=run.tenant.domain,
            error=str(error),
        )

    # ------------------------------------------------------------------
    # Domain update
    # ------------------------------------------------------------------

    async def update_tenant_domain(self, tenant_id: str, new_domain: str) -> Tenant:
        """
        Move a tenant to a new primary domain.

        The new domain is configured before the registry swap; the old domain
        keeps serving until the swap commits.

        Raises:
            NotFoundError: Unknown tenant
            ConflictError: Domain taken, lost race, or tenant not serving
            ProvisioningError: Network reconfiguration failed (phase ``network``)
        """
        timeout = self.config.registry_operation_timeout_seconds
        tenant = await with_timeout(self.registry.get(tenant_id), timeout, "registry lookup")
        if not tenant:
            raise NotFoundError(f"Tenant '{tenant_id}' not found", tenant_id=tenant_id)

        if tenant.domain == new_domain:
            return tenant

        if tenant.status not in (TenantStatus.ACTIVE, TenantStatus.SUSPENDED):
            raise ConflictError(
                f"Cannot change domain while tenant is {tenant.status.value}",
                code=ErrorCode.INVALID_TRANSITION,
                tenant_id=tenant_id,
            )

        if await with_timeout(self.registry.get_by_domain(new_domain), timeout, "registry lookup"):
            raise ConflictError(
                f"Domain '{new_domain}' is already registered",
                code=ErrorCode.DOMAIN_EXISTS,
                field="domain",
            )

        old_domain = tenant.domain
        logger.info(
            "starting_domain_update",
            tenant_id=tenant_id,
            old_domain=old_domain,
            new_domain=new_domain,
        )

        if self.config.enable_network_provisioning:
            try:
                await with_timeout(
                    self.network.configure_routing(new_domain),
                    self.config.network_operation_timeout_seconds,
                    "network configuration",
                )
            except (NetworkConfigurationError, CollaboratorUnavailableError) as e:
                subsystem = getattr(e, "subsystem", None)
                logger.error(
                    "domain_update_network_failed",
                    tenant_id=tenant_id,
                    new_domain=new_domain,
                    subsystem=subsystem,
                    error=str(e),
                )
                await self._teardown_quietly(tenant_id, new_domain)
                code = self._network_code(e)
                raise ProvisioningError(
                    self._network_message(subsystem),
                    phase="network",
                    code=code,
                    subsystem=subsystem,
                    cause=e,
                    tenant_id=tenant_id,
                ) from e

        try:
            updated = await with_timeout(
                self.registry.update_domain(tenant_id, old_domain, new_domain),
                timeout,
                "registry domain swap",
            )
        except (ConflictError, NotFoundError):
            # the swap definitely did not commit
            if self.config.enable_network_provisioning:
                await self._teardown_quietly(tenant_id, new_domain)
            raise

        if self.config.enable_network_provisioning:
            await self._teardown_quietly(tenant_id, old_domain)

        logger.info(
            "tenant_domain_updated",
            tenant_id=tenant_id,
            old_domain=old_domain,
            new_domain=new_domain,
        )
        return updated

    async def _teardown_quietly(self, tenant_id: str, domain: str) -> bool:
        """Best-effort network teardown. Returns whether it succeeded."""
        try:
            await with_timeout(
                self.network.teardown_routing(domain),
                self.config.network_operation_timeout_seconds,
                "network teardown",
            )
        except Exception as e:
            logger.warning(
                "network_teardown_failed", tenant_id=tenant_id, domain=domain, error=str(e)
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Deprovision
    # ------------------------------------------------------------------

    async def deprovision_tenant(
        self, tenant_id: str, missing_ok: bool = False
    ) -> DeprovisionResult:
        """
        Tear down a tenant.

        Order: mark ``inactive``, destroy the store, tear down network
        (best-effort), delete the registry row last so an interrupted run
        stays discoverable for retry.

        Args:
            tenant_id: Tenant identifier
            missing_ok: Treat an unknown tenant as already deprovisioned

        Raises:
            NotFoundError: Unknown tenant and ``missing_ok`` is false
            ConflictError: Tenant is still being provisioned
            ProvisioningError: Store could not be destroyed (phase ``store``)
        """
        logger.info("starting_tenant_deprovisioning", tenant_id=tenant_id)
        handle = resource_handle_for(tenant_id, self.config)
        stale_before = utc_now() - timedelta(seconds=self.config.provisioning_stale_seconds)

        try:
            tenant = await with_timeout(
                self.registry.transition_status(
                    tenant_id,
                    TenantStatus.INACTIVE,
                    DEPROVISION_FROM,
                    reason="Tenant deprovisioned",
                    provisioning_stale_before=stale_before,
                ),
                self.config.registry_operation_timeout_seconds,
                "registry transition",
            )
        except NotFoundError:
            if not missing_ok:
                raise
            # sweep anything an interrupted run may have left behind
            removed = await self._destroy_for_deprovision(tenant_id, [handle])
            logger.info("tenant_already_absent", tenant_id=tenant_id, store_removed=removed)
            return DeprovisionResult(
                tenant_id=tenant_id, already_absent=True, store_removed=removed
            )

        handles = [handle]
        if tenant.resource_handle and tenant.resource_handle != handle:
            handles.append(tenant.resource_handle)
        removed = await self._destroy_for_deprovision(tenant_id, handles)

        network_ok = True
        if self.config.enable_network_provisioning:
            network_ok = await self._teardown_quietly(tenant_id, tenant.domain)

        await with_timeout(
            self.registry.delete(tenant_id),
            self.config.registry_operation_timeout_seconds,
            "registry delete",
        )

        logger.info(
            "tenant_deprovisioned",
            tenant_id=tenant_id,
            domain=tenant.domain,
            store_removed=removed,
            network_teardown_ok=network_ok,
        )
        return DeprovisionResult(
            tenant_id=tenant_id,
            store_removed=removed,
            network_teardown_ok=network_ok,
            domain=tenant.domain,
        )

    async def _destroy_for_deprovision(self, tenant_id: str, handles: list[str]) -> bool:
        removed = False
        for handle in handles:
            try:
                removed = (
                    await with_timeout(
                        self.resources.destroy_store(handle),
                        self.config.store_operation_timeout_seconds,
                        "store destroy",
                    )
                    or removed
                )
            except Exception as e:
                logger.error(
                    "tenant_store_destroy_failed",
                    tenant_id=tenant_id,
                    resource_handle=handle,
                    error=str(e),
                )
                raise ProvisioningError(
                    "Failed to destroy tenant store",
                    phase="store",
                    code=ErrorCode.DEPROVISION_ERROR,
                    residual_resources=[f"store:{handle}"],
                    cause=e,
                    tenant_id=tenant_id,
                ) from e
        return removed

    # ------------------------------------------------------------------
    # Administrative toggles
    # ------------------------------------------------------------------

    async def suspend_tenant(self, tenant_id: str, reason: Optional[str] = None) -> Tenant:
        """Suspend a tenant. Registry-only; resources are kept."""
        tenant = await self._transition(
            tenant_id, TenantStatus.SUSPENDED, SUSPEND_FROM, reason or "Suspended by administrator"
        )
        logger.info("tenant_suspended", tenant_id=tenant_id)
        return tenant

    async def activate_tenant(self, tenant_id: str, reason: Optional[str] = None) -> Tenant:
        """Re-activate a suspended tenant. Registry-only."""
        tenant = await self._transition(
            tenant_id, TenantStatus.ACTIVE, ACTIVATE_FROM, reason or "Activated by administrator"
        )
        logger.info("tenant_activated", tenant_id=tenant_id)
        return tenant

    async def _transition(
        self,
        tenant_id: str,
        target: TenantStatus,
        allowed_from: frozenset[TenantStatus],
        reason: str,
    ) -> Tenant:
        try:
            return await with_timeout(
                self.registry.transition_status(tenant_id, target, allowed_from, reason=reason),
                self.config.registry_operation_timeout_seconds,
                "registry transition",
            )
        except ControlPlaneError as e:
            logger.info(
                "tenant_transition_rejected",
                tenant_id=tenant_id,
                target=target.value,
                code=e.code.value,
            )
            raise

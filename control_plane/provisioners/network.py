"""
Edge Network Provisioner

Configures DNS (Cloudflare), edge TLS (Cloudflare custom hostnames) and
origin routing (nginx) for a tenant domain, and exposes read-only probes
for each of them plus site liveness.
"""

import asyncio
import socket
import ssl
import time
from datetime import datetime, timezone
from typing import Optional

import httpx
from structlog import get_logger

from ..config import PlatformConfig, get_config
from ..exceptions import NetworkConfigurationError
from .base import NetworkProvisioner, ProbeResult
from .cloudflare import CloudflareAPIError, CloudflareClient
from .nginx import NginxRoutingConfigurator, RoutingCommandError

logger = get_logger()


class EdgeNetworkProvisioner(NetworkProvisioner):
    """Network provisioning backed by Cloudflare and nginx."""

    def __init__(
        self,
        config: Optional[PlatformConfig] = None,
        cloudflare: Optional[CloudflareClient] = None,
        routing: Optional[NginxRoutingConfigurator] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize network provisioner.

        Args:
            config: Platform configuration
            cloudflare: DNS / certificate API client
            routing: nginx site manager
            http_client: Client used for liveness probes
        """
        self.config = config or get_config()
        self.cloudflare = cloudflare or CloudflareClient(self.config)
        self.routing = routing or NginxRoutingConfigurator(self.config)
        self.http_client = http_client or httpx.AsyncClient(
            timeout=self.config.probe_timeout_seconds, follow_redirects=True
        )

    async def configure_routing(self, domain: str) -> None:
        if self.cloudflare.enabled:
            try:
                await self.cloudflare.ensure_a_record(domain, self.config.server_ip)
            except CloudflareAPIError as e:
                raise NetworkConfigurationError("dns", f"DNS setup failed for {domain}: {e}") from e

            try:
                await self.cloudflare.ensure_custom_hostname(domain)
            except CloudflareAPIError as e:
                raise NetworkConfigurationError(
                    "tls", f"Certificate issuance failed for {domain}: {e}"
                ) from e
        else:
            logger.warning("cloudflare_not_configured_skipping_dns_tls", domain=domain)

        try:
            await self.routing.configure(domain)
        except (RoutingCommandError, OSError) as e:
            raise NetworkConfigurationError(
                "routing", f"Routing setup failed for {domain}: {e}"
            ) from e

        logger.info("network_routing_configured", domain=domain)

    async def teardown_routing(self, domain: str) -> None:
        """
        Tear down in reverse order of configuration.

        Every step is attempted; the first failure is raised afterwards.
        """
        first_error: Optional[NetworkConfigurationError] = None

        try:
            await self.routing.remove(domain)
        except (RoutingCommandError, OSError) as e:
            logger.warning("routing_teardown_failed", domain=domain, error=str(e))
            first_error = first_error or NetworkConfigurationError("routing", str(e))

        if self.cloudflare.enabled:
            try:
                await self.cloudflare.delete_custom_hostname(domain)
            except CloudflareAPIError as e:
                logger.warning("certificate_teardown_failed", domain=domain, error=str(e))
                first_error = first_error or NetworkConfigurationError("tls", str(e))

            try:
                await self.cloudflare.delete_dns_records(domain)
            except CloudflareAPIError as e:
                logger.warning("dns_teardown_failed", domain=domain, error=str(e))
                first_error = first_error or NetworkConfigurationError("dns", str(e))

        if first_error:
            raise first_error

    async def probe_certificate(self, domain: str) -> ProbeResult:
        started = time.perf_counter()
        context = ssl.create_default_context()
        try:
            _, writer = await asyncio.open_connection(
                domain, 443, ssl=context, server_hostname=domain
            )
        except (ssl.SSLError, OSError) as e:
            return ProbeResult.failed(f"TLS handshake failed: {e}")

        try:
            certificate = writer.get_extra_info("peercert") or {}
        finally:
            writer.close()
            await writer.wait_closed()

        not_after = certificate.get("notAfter")
        if not not_after:
            return ProbeResult.failed("No certificate presented")

        expires_at = datetime.fromtimestamp(ssl.cert_time_to_seconds(not_after), tz=timezone.utc)
        days_left = (expires_at - datetime.now(timezone.utc)).days
        details = {"expires_at": expires_at.isoformat(), "days_left": days_left}

        if days_left < 0:
            result = ProbeResult.failed("Certificate expired", **details)
        elif days_left <= self.config.tls_expiry_warning_days:
            result = ProbeResult.degraded(f"Certificate expires in {days_left} days", **details)
        else:
            result = ProbeResult.ok("valid", **details)
        result.latency_ms = (time.perf_counter() - started) * 1000
        return result

    async def probe_routing(self, domain: str) -> ProbeResult:
        available, enabled = self.routing.site_paths(domain)
        if self.routing.is_configured(domain):
            return ProbeResult.ok("configured", config_file=str(enabled))
        if available.exists():
            return ProbeResult.degraded("Site written but not enabled", config_file=str(available))
        return ProbeResult.failed("Configuration file not found")

    async def probe_dns(self, domain: str) -> ProbeResult:
        loop = asyncio.get_running_loop()
        started = time.perf_counter()
        try:
            infos = await loop.getaddrinfo(domain, None, family=socket.AF_INET)
        except socket.gaierror as e:
            return ProbeResult.failed(f"Resolution failed: {e}")

        addresses = sorted({info[4][0] for info in infos})
        result = ProbeResult.ok("resolved", addresses=addresses)
        result.latency_ms = (time.perf_counter() - started) * 1000
        return result

    async def probe_liveness(self, domain: str) -> ProbeResult:
        started = time.perf_counter()
        try:
            response = await self.http_client.get(f"https://{domain}/health")
        except httpx.HTTPError as e:
            return ProbeResult.failed(f"Health check failed: {e}")

        latency_ms = (time.perf_counter() - started) * 1000
        if response.status_code != 200:
            result = ProbeResult.failed(
                f"Health check returned {response.status_code}", status_code=response.status_code
            )
        else:
            result = ProbeResult.ok(
                "healthy", response_time=response.headers.get("x-response-time", "unknown")
            )
        result.latency_ms = latency_ms
        return result

    async def close(self) -> None:
        await self.http_client.aclose()
        await self.cloudflare.close()

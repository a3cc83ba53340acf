"""
Cloudflare API Client

DNS record management and edge certificate issuance (custom hostnames)
for tenant domains. All operations are idempotent so they can be retried
and replayed during reconciliation.
"""

from typing import Any, Optional

import httpx
from structlog import get_logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import PlatformConfig, get_config

logger = get_logger()


class CloudflareAPIError(Exception):
    """Cloudflare rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class CloudflareTransientError(CloudflareAPIError):
    """Network failure or 5xx response; safe to retry."""


class CloudflareClient:
    """Thin async client over the Cloudflare v4 API."""

    def __init__(
        self,
        config: Optional[PlatformConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Cloudflare client.

        Args:
            config: Platform configuration (API token, zone, defaults)
            http_client: Optional pre-built HTTP client (used by tests)
        """
        self.config = config or get_config()
        self.zone_id = self.config.cloudflare_zone_id
        self.http_client = http_client or httpx.AsyncClient(
            base_url=self.config.cloudflare_api_url,
            headers={
                "Authorization": f"Bearer {self.config.cloudflare_api_token}",
                "Content-Type": "application/json",
            },
            timeout=30.0,
        )

    @property
    def enabled(self) -> bool:
        """Whether API credentials are configured."""
        return bool(self.config.cloudflare_api_token and self.zone_id)

    async def close(self) -> None:
        await self.http_client.aclose()

    @retry(
        retry=retry_if_exception_type(CloudflareTransientError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """
        Send a request and unwrap the ``result`` envelope.

        Raises:
            CloudflareTransientError: On transport errors or 5xx responses
            CloudflareAPIError: When Cloudflare reports failure
        """
        try:
            response = await self.http_client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise CloudflareTransientError(f"Cloudflare unreachable: {e}") from e

        if response.status_code >= 500:
            raise CloudflareTransientError(
                f"Cloudflare returned {response.status_code}", response.status_code
            )

        try:
            body = response.json()
        except ValueError as e:
            raise CloudflareAPIError(
                f"Invalid Cloudflare response ({response.status_code})", response.status_code
            ) from e

        if response.status_code >= 400 or not body.get("success", False):
            raise CloudflareAPIError(
                f"Cloudflare API error: {body.get('errors')}", response.status_code
            )

        return body.get("result")

    # DNS records

    async def list_dns_records(self, name: str, record_type: Optional[str] = None) -> list[dict]:
        params = {"name": name}
        if record_type:
            params["type"] = record_type
        return await self._request("GET", f"/zones/{self.zone_id}/dns_records", params=params)

    async def ensure_a_record(self, domain: str, ip_address: str) -> dict:
        """
        Create an A record unless one already exists.

        Args:
            domain: Fully qualified name
            ip_address: Origin address

        Returns:
            The existing or created record
        """
        existing = await self.list_dns_records(domain, "A")
        if existing:
            logger.info("dns_record_exists", domain=domain)
            return existing[0]

        record = await self._request(
            "POST",
            f"/zones/{self.zone_id}/dns_records",
            json={
                "type": "A",
                "name": domain,
                "content": ip_address,
                "ttl": self.config.dns_record_ttl,
                "proxied": self.config.dns_proxied,
            },
        )
        logger.info("dns_record_created", domain=domain, record_id=record.get("id"))
        return record

    async def delete_dns_records(self, domain: str) -> int:
        """Delete every record for ``domain``. Returns how many were removed."""
        records = await self.list_dns_records(domain)
        for record in records:
            await self._request("DELETE", f"/zones/{self.zone_id}/dns_records/{record['id']}")
        if records:
            logger.info("dns_records_removed", domain=domain, count=len(records))
        return len(records)

    # Custom hostnames (edge certificates)

    async def get_custom_hostname(self, hostname: str) -> Optional[dict]:
        results = await self._request(
            "GET", f"/zones/{self.zone_id}/custom_hostnames", params={"hostname": hostname}
        )
        return results[0] if results else None

    async def ensure_custom_hostname(self, hostname: str) -> dict:
        """
        Register ``hostname`` and request a DV certificate for it.

        Returns:
            The existing or created custom hostname
        """
        existing = await self.get_custom_hostname(hostname)
        if existing:
            logger.info("custom_hostname_exists", hostname=hostname)
            return existing

        created = await self._request(
            "POST",
            f"/zones/{self.zone_id}/custom_hostnames",
            json={"hostname": hostname, "ssl": {"method": "http", "type": "dv"}},
        )
        logger.info("custom_hostname_created", hostname=hostname, id=created.get("id"))
        return created

    async def delete_custom_hostname(self, hostname: str) -> bool:
        existing = await self.get_custom_hostname(hostname)
        if not existing:
            return False
        await self._request("DELETE", f"/zones/{self.zone_id}/custom_hostnames/{existing['id']}")
        logger.info("custom_hostname_removed", hostname=hostname)
        return True

"""
Nginx Routing Configurator

Renders a per-domain reverse-proxy site, enables it and reloads nginx.
TLS is terminated at the edge, so the origin site listens on plain HTTP.
"""

import asyncio
import os
import shlex
from pathlib import Path
from typing import Optional

from structlog import get_logger

from ..config import PlatformConfig, get_config
from ..tenant_management.models import utc_now

logger = get_logger()

SITE_TEMPLATE = """\
# Auto-generated configuration for {domain}
# Generated at: {generated_at}

limit_req_zone $binary_remote_addr zone={zone}_api:10m rate=100r/m;
limit_req_zone $binary_remote_addr zone={zone}_auth:10m rate=5r/m;

server {{
    listen 80;
    server_name {domain};

    add_header X-Frame-Options DENY always;
    add_header X-Content-Type-Options nosniff always;
    add_header Referrer-Policy "strict-origin-when-cross-origin" always;

    client_max_body_size 10M;

    gzip on;
    gzip_types text/plain text/css application/javascript application/json;

    location /api/auth/ {{
        limit_req zone={zone}_auth burst=10 nodelay;
        proxy_pass {upstream};
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
    }}

    location /api/ {{
        limit_req zone={zone}_api burst=50 nodelay;
        proxy_pass {upstream};
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
    }}

    location = /health {{
        proxy_pass {upstream};
        access_log off;
    }}

    location / {{
        proxy_pass {upstream};
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
    }}

    access_log /var/log/nginx/{domain}-access.log;
    error_log /var/log/nginx/{domain}-error.log;
}}
"""


class RoutingCommandError(Exception):
    """nginx rejected the configuration or failed to reload."""


def render_site_config(domain: str, upstream: str) -> str:
    """Render the site file for ``domain``."""
    return SITE_TEMPLATE.format(
        domain=domain,
        zone=domain.replace(".", "_").replace("-", "_"),
        upstream=upstream,
        generated_at=utc_now().isoformat(),
    )


class NginxRoutingConfigurator:
    """Manages site files under sites-available / sites-enabled."""

    def __init__(self, config: Optional[PlatformConfig] = None):
        self.config = config or get_config()
        self.available_dir = Path(self.config.nginx_sites_available)
        self.enabled_dir = Path(self.config.nginx_sites_enabled)

    def site_paths(self, domain: str) -> tuple[Path, Path]:
        name = f"{domain}.conf"
        return self.available_dir / name, self.enabled_dir / name

    def is_configured(self, domain: str) -> bool:
        """Check the enabled site file exists."""
        return self.site_paths(domain)[1].exists()

    async def configure(self, domain: str) -> None:
        """Write and enable the site, validate it and reload nginx."""
        await asyncio.to_thread(self._write_site, domain)
        try:
            await self._run("nginx -t")
        except RoutingCommandError:
            await asyncio.to_thread(self._remove_site, domain)
            raise
        await self._run(self.config.nginx_reload_command)
        logger.info("nginx_site_configured", domain=domain)

    async def remove(self, domain: str) -> bool:
        """Disable and delete the site, then reload. Returns whether files existed."""
        removed = await asyncio.to_thread(self._remove_site, domain)
        if removed:
            await self._run(self.config.nginx_reload_command)
            logger.info("nginx_site_removed", domain=domain)
        return removed

    def _write_site(self, domain: str) -> None:
        available, enabled = self.site_paths(domain)
        available.parent.mkdir(parents=True, exist_ok=True)
        enabled.parent.mkdir(parents=True, exist_ok=True)
        available.write_text(render_site_config(domain, self.config.upstream_url))
        if not enabled.exists():
            os.symlink(available, enabled)

    def _remove_site(self, domain: str) -> bool:
        removed = False
        for path in self.site_paths(domain):
            if path.is_symlink() or path.exists():
                path.unlink()
                removed = True
        return removed

    async def _run(self, command: str) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *shlex.split(command),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RoutingCommandError(f"'{command}' could not be started: {e}") from e
        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise
        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            raise RoutingCommandError(f"'{command}' exited with {process.returncode}: {detail}")

"""
Control Plane Configuration Management

Centralizes all configuration for the tenant control plane.
Values come from the environment or a .env file; secrets are required outside local.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environments."""

    LOCAL = "local"
    DEV = "dev"
    PROD = "prod"


class PlatformConfig(BaseSettings):
    """
    Control plane configuration settings.

    Every field has a default suitable for local development.
    Timeouts are in seconds and bound every collaborator call.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Environment = Field(default=Environment.LOCAL)

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    # Platform Database (tenant registry)
    platform_mongo_db_url: str = Field(default="mongodb://localhost:27017")
    platform_mongo_db_name: str = Field(default="news_cms_master")
    registry_connect_timeout_seconds: float = Field(default=10.0, gt=0)

    # Tenant stores
    tenant_mongo_db_url: Optional[str] = Field(default=None)
    default_tenant_db_prefix: str = Field(default="news_cms_tenant_")

    # Timeouts for collaborator calls
    registry_operation_timeout_seconds: float = Field(default=10.0, gt=0)
    store_operation_timeout_seconds: float = Field(default=30.0, gt=0)
    network_operation_timeout_seconds: float = Field(default=120.0, gt=0)
    compensation_timeout_seconds: float = Field(default=15.0, gt=0)
    compensation_max_attempts: int = Field(default=3, ge=1)
    probe_timeout_seconds: float = Field(default=10.0, gt=0)

    # Overall deadlines
    provisioning_deadline_seconds: float = Field(default=300.0, gt=0)
    status_deadline_seconds: float = Field(default=20.0, gt=0)
    bulk_deadline_seconds: float = Field(default=600.0, gt=0)

    # Bulk operations
    bulk_max_concurrency: int = Field(default=5, ge=1)
    bulk_max_ids: int = Field(default=100, ge=1)

    # Provisioning policy
    enable_network_provisioning: bool = Field(default=True)
    require_network_on_create: bool = Field(default=False)
    admin_secret_length: int = Field(default=12, ge=12)
    trial_period_days: int = Field(default=30, ge=1)
    provisioning_stale_seconds: int = Field(default=900, ge=0)

    # DNS / TLS provider (Cloudflare)
    cloudflare_api_url: str = Field(default="https://api.cloudflare.com/client/v4")
    cloudflare_api_token: Optional[str] = Field(default=None)
    cloudflare_zone_id: Optional[str] = Field(default=None)
    server_ip: str = Field(default="127.0.0.1")
    dns_record_ttl: int = Field(default=300)
    dns_proxied: bool = Field(default=True)

    # Reverse proxy
    nginx_sites_available: str = Field(default="/etc/nginx/sites-available")
    nginx_sites_enabled: str = Field(default="/etc/nginx/sites-enabled")
    nginx_reload_command: str = Field(default="nginx -s reload")
    upstream_url: str = Field(default="http://127.0.0.1:3000")
    tls_expiry_warning_days: int = Field(default=14, ge=0)

    # Security
    jwt_secret_key: str = Field(default="change-me-in-production")
    jwt_algorithm: str = Field(default="HS256")
    jwt_expiry_hours: int = Field(default=12)
    require_platform_admin: bool = Field(default=True)

    # CORS Configuration
    allowed_origins: str = Field(default="http://localhost:3000")

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        """Refuse the placeholder signing key outside local."""
        env = info.data.get("environment", Environment.LOCAL)
        if env != Environment.LOCAL and v == "change-me-in-production":
            raise ValueError("jwt_secret_key must be set in non-local environments")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize log level names."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {v}")
        return level

    def get_allowed_origins_list(self) -> list[str]:
        """CORS origins; anything goes in local."""
        if self.environment == Environment.LOCAL:
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    def get_tenant_db_name(self, tenant_id: str) -> str:
        """Generate the deterministic tenant store name (resource handle)."""
        return f"{self.default_tenant_db_prefix}{tenant_id.replace('-', '_')}"

    def get_tenant_mongo_url(self) -> str:
        """Connection string for tenant stores (defaults to the platform server)."""
        return self.tenant_mongo_db_url or self.platform_mongo_db_url

    @property
    def is_production(self) -> bool:
        """True in prod."""
        return self.environment == Environment.PROD

    @property
    def is_local(self) -> bool:
        """True in local development."""
        return self.environment == Environment.LOCAL

    @property
    def expose_error_details(self) -> bool:
        """Raw collaborator errors are only surfaced outside production."""
        return self.environment in (Environment.LOCAL, Environment.DEV)


@lru_cache()
def get_config() -> PlatformConfig:
    """
    Cached platform configuration.

    Settings are read once per process.
    """
    return PlatformConfig()

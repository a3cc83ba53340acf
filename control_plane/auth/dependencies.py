"""
Authentication Dependencies

FastAPI dependencies enforcing platform-operator access.
"""

from typing import Any, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from structlog import get_logger

from ..config import PlatformConfig, get_config
from .security import PLATFORM_ADMIN_ROLE, TokenIssuer

logger = get_logger()

# HTTP Bearer token authentication
security = HTTPBearer(auto_error=False)


def get_token_issuer(config: PlatformConfig = Depends(get_config)) -> TokenIssuer:
    """Token issuer bound to the current configuration."""
    return TokenIssuer(config)


async def require_platform_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    config: PlatformConfig = Depends(get_config),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> Optional[dict[str, Any]]:
    """
    Require a bearer token carrying the platform admin role.

    Returns:
        Token claims, or None when enforcement is disabled

    Raises:
        HTTPException: 401 for a missing or invalid token, 403 for the wrong role
    """
    if not config.require_platform_admin:
        return None

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not credentials:
        raise credentials_exception

    payload = issuer.decode(credentials.credentials)
    if not payload or not payload.get("sub"):
        logger.warning("invalid_token_decoded")
        raise credentials_exception

    if payload.get("role") != PLATFORM_ADMIN_ROLE:
        logger.warning(
            "insufficient_permissions", subject=payload.get("sub"), role=payload.get("role")
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Platform admin access required",
        )

    return payload

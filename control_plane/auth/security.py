"""
Security Capabilities

Credential hashing with Argon2id and JWT issuance for platform operators.
Both are stand-alone services that take records as plain data.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from structlog import get_logger

from ..config import PlatformConfig, get_config

logger = get_logger()

PLATFORM_ADMIN_ROLE = "platform_admin"


class CredentialHasher:
    """Hashes and verifies secrets. Argon2 preferred, bcrypt accepted for legacy hashes."""

    def __init__(self, context: Optional[CryptContext] = None):
        self.context = context or CryptContext(
            schemes=["argon2", "bcrypt"],
            deprecated="auto",
            argon2__memory_cost=65536,  # 64 MB
            argon2__time_cost=3,
            argon2__parallelism=4,
        )

    def hash(self, secret: str) -> str:
        """
        Hash a secret.

        Args:
            secret: Plain text secret

        Returns:
            Hashed secret
        """
        return self.context.hash(secret)

    def verify(self, secret: str, hashed: str) -> bool:
        """
        Verify a secret against a stored hash.

        Args:
            secret: Plain text secret to verify
            hashed: Stored hash

        Returns:
            True if the secret matches
        """
        try:
            verified, needs_rehash = self.context.verify_and_update(secret, hashed)
        except (ValueError, TypeError) as e:
            logger.warning("credential_verification_error", error=str(e))
            return False

        if verified and needs_rehash:
            logger.info("credential_needs_rehash")
        return verified


class TokenIssuer:
    """Issues and decodes signed bearer tokens."""

    def __init__(self, config: Optional[PlatformConfig] = None):
        self.config = config or get_config()

    def issue(
        self,
        subject: str,
        role: str = PLATFORM_ADMIN_ROLE,
        expires_delta: Optional[timedelta] = None,
        **claims: Any,
    ) -> str:
        """
        Create a signed token.

        Args:
            subject: Operator identifier
            role: Role claim
            expires_delta: Lifetime (defaults to config value)
            **claims: Extra claims

        Returns:
            Encoded JWT
        """
        expire = datetime.now(timezone.utc) + (
            expires_delta or timedelta(hours=self.config.jwt_expiry_hours)
        )
        payload = {"sub": subject, "role": role, "exp": expire, **claims}
        return jwt.encode(payload, self.config.jwt_secret_key, algorithm=self.config.jwt_algorithm)

    def decode(self, token: str) -> Optional[dict[str, Any]]:
        """
        Decode and validate a token.

        Args:
            token: Encoded JWT

        Returns:
            Claims if valid, None otherwise
        """
        try:
            return jwt.decode(
                token,
                self.config.jwt_secret_key,
                algorithms=[self.config.jwt_algorithm],
            )
        except JWTError as e:
            logger.warning("jwt_decode_error", error=str(e))
            return None

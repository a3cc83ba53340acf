"""
Authentication Module

Credential hashing, platform-operator tokens and the access dependency.
"""

from .security import PLATFORM_ADMIN_ROLE, CredentialHasher, TokenIssuer

__all__ = [
    "PLATFORM_ADMIN_ROLE",
    "CredentialHasher",
    "TokenIssuer",
]

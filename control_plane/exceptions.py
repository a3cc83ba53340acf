"""
Control Plane Exceptions

Error taxonomy shared by the orchestrator, aggregators and the HTTP layer.
Every error carries a stable code and a safe message; raw collaborator
detail stays in ``cause`` and is only rendered when explicitly requested.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Stable error codes exposed to API clients."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    DOMAIN_EXISTS = "DOMAIN_EXISTS"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PROVISIONING_IN_PROGRESS = "PROVISIONING_IN_PROGRESS"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    CREATION_ERROR = "CREATION_ERROR"
    DNS_ERROR = "DNS_ERROR"
    SSL_ERROR = "SSL_ERROR"
    ROUTING_ERROR = "ROUTING_ERROR"
    DEPROVISION_ERROR = "DEPROVISION_ERROR"
    COLLABORATOR_UNAVAILABLE = "COLLABORATOR_UNAVAILABLE"
    SERVICE_NOT_READY = "SERVICE_NOT_READY"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ControlPlaneError(Exception):
    """Base error with code, HTTP status and context."""

    default_code = ErrorCode.INTERNAL_ERROR
    status_code = 500

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        cause: Optional[BaseException] = None,
        **context: Any,
    ):
        """
        Initialize control plane error.

        Args:
            message: Safe, human-readable message
            code: Error code (defaults to the class code)
            cause: Underlying exception, never shown outside development mode
            **context: Additional structured context
        """
        self.message = message
        self.code = code or self.default_code
        self.cause = cause
        self.context = context
        super().__init__(message)

    def to_dict(self, include_details: bool = False) -> dict[str, Any]:
        """
        Convert to dict for API responses.

        Args:
            include_details: Include context and cause text (development only)

        Returns:
            Serializable error payload
        """
        payload: dict[str, Any] = {
            "success": False,
            "code": self.code.value,
            "message": self.message,
        }
        if include_details:
            details = dict(self.context)
            if self.cause is not None:
                details["cause"] = f"{type(self.cause).__name__}: {self.cause}"
            payload["details"] = details
        return payload


class ValidationError(ControlPlaneError):
    """Malformed input, rejected before any side effect."""

    default_code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class ConflictError(ControlPlaneError):
    """Domain/subdomain already registered or invalid status transition."""

    default_code = ErrorCode.DOMAIN_EXISTS
    status_code = 409


class NotFoundError(ControlPlaneError):
    """Unknown tenant id."""

    default_code = ErrorCode.TENANT_NOT_FOUND
    status_code = 404


class CollaboratorUnavailableError(ControlPlaneError):
    """A provisioner, probe or the registry could not be reached."""

    default_code = ErrorCode.COLLABORATOR_UNAVAILABLE
    status_code = 503


class ProvisioningError(ControlPlaneError):
    """
    A provisioning step failed.

    Raised only after compensation has run. ``phase`` names the failing step
    (record, store, identity, activation, network); ``residual_resources``
    lists anything compensation could not remove.
    """

    default_code = ErrorCode.CREATION_ERROR
    status_code = 500

    def __init__(
        self,
        message: str,
        phase: str,
        code: Optional[ErrorCode] = None,
        subsystem: Optional[str] = None,
        residual_resources: Optional[list[str]] = None,
        cause: Optional[BaseException] = None,
        **context: Any,
    ):
        self.phase = phase
        self.subsystem = subsystem
        self.residual_resources = residual_resources or []
        super().__init__(message, code=code, cause=cause, **context)
        if self.code in (ErrorCode.DNS_ERROR, ErrorCode.SSL_ERROR, ErrorCode.ROUTING_ERROR):
            self.status_code = 502
        elif self.code == ErrorCode.COLLABORATOR_UNAVAILABLE:
            self.status_code = 503
        elif self.code == ErrorCode.DEADLINE_EXCEEDED:
            self.status_code = 504

    def to_dict(self, include_details: bool = False) -> dict[str, Any]:
        payload = super().to_dict(include_details)
        payload["phase"] = self.phase
        if self.subsystem:
            payload["subsystem"] = self.subsystem
        if self.residual_resources:
            payload["residual_resources"] = list(self.residual_resources)
        return payload


class NetworkConfigurationError(Exception):
    """Raised by network provisioners; ``subsystem`` is dns, tls or routing."""

    SUBSYSTEM_CODES = {
        "dns": ErrorCode.DNS_ERROR,
        "tls": ErrorCode.SSL_ERROR,
        "routing": ErrorCode.ROUTING_ERROR,
    }

    def __init__(self, subsystem: str, message: str):
        if subsystem not in self.SUBSYSTEM_CODES:
            raise ValueError(f"Unknown network subsystem: {subsystem}")
        self.subsystem = subsystem
        super().__init__(message)

    @property
    def code(self) -> ErrorCode:
        return self.SUBSYSTEM_CODES[self.subsystem]

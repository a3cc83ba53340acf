"""
Shared Services Module

Platform database readiness and collaborator timeout helpers.
"""

from .timeouts import DeadlineExceededError, with_timeout

__all__ = ["DeadlineExceededError", "with_timeout"]

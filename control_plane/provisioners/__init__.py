"""
Provisioners Module

Collaborators that create and tear down per-tenant resources.
"""

from .base import (
    NetworkProvisioner,
    ProbeResult,
    ProbeStatus,
    ResourceProvisioner,
    StoreUsage,
)
from .mongo_store import MongoResourceProvisioner
from .network import EdgeNetworkProvisioner

__all__ = [
    "NetworkProvisioner",
    "ProbeResult",
    "ProbeStatus",
    "ResourceProvisioner",
    "StoreUsage",
    "MongoResourceProvisioner",
    "EdgeNetworkProvisioner",
]

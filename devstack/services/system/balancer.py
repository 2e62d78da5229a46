"""
Load balancer registration interface.

The balancer that routes HTTP traffic to system instances is an external
service; the scaling engine only needs to drop a system's registrations
before killing its instances.
"""
import logging
from typing import Protocol

from devstack.services.system.system_base import System

logger = logging.getLogger(__name__)


class BalancerProtocol(Protocol):
    """Protocol defining the balancer interface."""

    async def clear(self, system: System) -> None:
        """Remove every backend registered for a system."""
        ...


class NoOpBalancer:
    """
    No-op balancer.

    Used when no balancer is configured, allowing systems without HTTP
    routing to be managed.
    """

    async def clear(self, system: System) -> None:
        logger.debug(f"NoOp: clear({system.name})")

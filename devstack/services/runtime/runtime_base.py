"""
Abstract base class for container runtime clients.

Defines the primitives the build pipeline and the scaling engine need from
a container runtime.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional

if TYPE_CHECKING:
    from devstack.services.system.system_base import ScaleOptions, System


def port_key(spec) -> str:
    """Normalize a container port spec to the runtime's ``<port>/<proto>`` key."""
    spec = str(spec)
    return spec if "/" in spec else f"{spec}/tcp"


@dataclass
class Image:
    """A built image, as reported by the runtime."""

    id: str
    tag: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Instance:
    """A container belonging to a system."""

    id: str
    system: str
    type: str = "daemon"
    created: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)


class ContainerRuntime(ABC):
    """
    Abstract base class for container runtime clients.

    Implementations must provide methods for:
    - Building images from a tar build context
    - Looking up images by tag
    - Inspecting containers
    - Listing, starting and stopping system instances
    """

    @abstractmethod
    async def build_image(
        self,
        archive,
        options: Dict[str, Any],
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Submit a build context.

        Raises once if the submission itself fails. Otherwise returns an
        async iterator over the decoded build messages, each either
        ``{"stream": str}``, ``{"error": str, "errorDetail": ...}`` or a
        progress message (``{"status": ..., "id": ..., "progress": ...}``).
        Exhausting the iterator is the end-of-stream signal.

        Args:
            archive: File-like tar archive of the build context
            options: Build query options (t, forcerm, nocache, q, target)
        """
        pass

    @abstractmethod
    async def find_image(self, tag: str) -> Image:
        """Look up an image by tag."""
        pass

    @abstractmethod
    async def inspect_container(self, container_id: str) -> Dict[str, Any]:
        """Return the runtime's inspect payload (NetworkSettings, Config, ...)."""
        pass

    @abstractmethod
    async def list_instances(self, system: "System", type: str = "daemon") -> List[Instance]:
        """
        List the running instances of a system.

        Returns:
            Instances in creation order, oldest first
        """
        pass

    @abstractmethod
    async def stop_instances(self, instances: List[Instance], kill: bool = False) -> None:
        """Stop (or kill, when ``kill``) the given instances."""
        pass

    @abstractmethod
    async def run_daemon_instance(self, system: "System", options: "ScaleOptions") -> Instance:
        """Launch one daemon instance of ``system`` with ``options.envs``."""
        pass

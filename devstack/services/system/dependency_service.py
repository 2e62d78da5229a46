"""
Dependency resolution for system scaling.

Makes sure every dependency of a system has a running instance and collects
the environment the dependencies export to it.
"""
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from devstack.core.exceptions import SystemDependError
from devstack.services.runtime.runtime_base import ContainerRuntime, Instance, port_key
from devstack.services.system.system_base import ScaleOptions, System

if TYPE_CHECKING:
    from devstack.services.system.scale_service import ScaleService

logger = logging.getLogger(__name__)


def parse_envs(collection: Optional[List[str]]) -> Dict[str, str]:
    """
    Parse ``KEY=VALUE`` entries into a dict.

    Entries without ``=`` are skipped; values keep any further ``=``.
    """
    envs = {}
    for env in collection or []:
        if "=" in env:
            key, value = env.split("=", 1)
            envs[key] = value
    return envs


def parse_ports(system: System, network_settings: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """
    Map a system's named ports to the host ports of an inspected container.

    Reads Docker's ``NetworkSettings.Ports`` bindings for each port declared
    in ``system.ports``; ``NetworkSettings.Access`` entries
    (``[{"name": ..., "port": ...}]``) are taken as already resolved.
    """
    network_settings = network_settings or {}
    ports: Dict[str, str] = {}

    for access in network_settings.get("Access") or []:
        if access.get("name") is not None:
            ports[access["name"]] = str(access.get("port"))

    bindings = network_settings.get("Ports") or {}
    for name, spec in system.ports.items():
        for binding in bindings.get(port_key(spec)) or []:
            if binding.get("HostPort"):
                ports[name] = str(binding["HostPort"])
                break

    return ports


class DependencyService:
    """
    Resolves a system's dependencies.

    Responsibilities:
    - Auto-start dependencies without running instances
    - Extract the environment exported by each dependency
    """

    def __init__(self, runtime: ContainerRuntime, scale_service: "ScaleService"):
        """
        Initialize DependencyService.

        Args:
            runtime: Container runtime client used to inspect instances
            scale_service: Scaling engine used to start dependencies
        """
        self.runtime = runtime
        self.scale_service = scale_service

    async def resolve_dependency_envs(
        self,
        system: System,
        options: ScaleOptions,
        required: bool = True,
    ) -> Dict[str, str]:
        """
        Ensure dependencies are running and merge their exported envs.

        Dependencies are handled in declaration order; a later dependency
        overrides keys exported by an earlier one.

        Args:
            system: The dependent system
            options: Scale options of the dependent (dependencies, pull)
            required: Start missing dependencies (or fail) when True

        Returns:
            Merged environment variables

        Raises:
            SystemDependError: A dependency is not running and
                options.dependencies is False
        """
        envs: Dict[str, str] = {}

        for depend in system.depends:
            instances = await self.scale_service.instances(depend)

            if not instances and required:
                if not options.dependencies:
                    raise SystemDependError(system.name, depend.name)

                scale_to = depend.scalable.default
                scale_to = scale_to if scale_to > 0 else 1
                logger.info(f"Starting dependency {depend.name} of {system.name} ({scale_to} instances)")
                await self.scale_service.scale(
                    depend,
                    scale_to,
                    ScaleOptions(dependencies=options.dependencies, pull=options.pull),
                )
                instances = await self.scale_service.instances(depend)

            if instances:
                envs.update(await self.get_envs(depend, instances))

        return envs

    async def get_envs(self, system: System, instances: List[Instance]) -> Dict[str, str]:
        """
        Expand a system's export template against its first instance.

        Args:
            system: The dependency
            instances: Its running instances

        Returns:
            Exported environment variables
        """
        if not instances:
            return {}

        data = await self.runtime.inspect_container(instances[0].id)
        ports = parse_ports(system, data.get("NetworkSettings"))
        instance_envs = parse_envs((data.get("Config") or {}).get("Env"))

        return system.expand_export_envs(envs=instance_envs, net={"port": ports})

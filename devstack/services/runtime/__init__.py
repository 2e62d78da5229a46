"""
Container runtime clients.

- ContainerRuntime: Interface the build pipeline and scaling engine rely on
- DockerEngineRuntime: Docker Engine API implementation
"""
from devstack.services.runtime.runtime_base import ContainerRuntime, Image, Instance
from devstack.services.runtime.docker_engine import DockerEngineRuntime

__all__ = [
    "ContainerRuntime",
    "DockerEngineRuntime",
    "Image",
    "Instance",
]

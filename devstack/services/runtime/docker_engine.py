"""
Container runtime client for the Docker Engine API.

Talks to the Docker daemon over its unix socket (or TCP) with httpx. System
instances are tracked through container labels, so the current state is
always re-read from the daemon.
"""
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from devstack.core.config import settings
from devstack.core.exceptions import RuntimeClientError
from devstack.services.runtime.runtime_base import ContainerRuntime, Image, Instance, port_key
from devstack.services.system.system_base import ScaleOptions, System

logger = logging.getLogger(__name__)


def _parse_json_line(line: str) -> Optional[Dict[str, Any]]:
    """Decode one build stream line. Undecodable lines become raw stream text."""
    line = line.strip()
    if not line:
        return None
    try:
        message = json.loads(line)
    except ValueError:
        return {"stream": line + "\n"}
    if not isinstance(message, dict):
        return {"stream": line + "\n"}
    return message


class DockerEngineRuntime(ContainerRuntime):
    """
    Runtime client for a local or remote Docker daemon.

    Responsibilities:
    - Stream image builds from a tar context
    - Create, start, inspect and stop labelled containers
    """

    def __init__(
        self,
        docker_host: str = None,
        api_version: str = None,
        timeout: float = None,
        label_prefix: str = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the Docker Engine runtime.

        Args:
            docker_host: unix:// socket path or http(s):// URL of the daemon
            api_version: Engine API version prefix (e.g. v1.43)
            timeout: Request timeout in seconds
            label_prefix: Prefix of the labels identifying system instances
            client: Preconfigured httpx client (mainly for tests)
        """
        self.docker_host = docker_host or settings.DOCKER_HOST
        self.api_version = api_version or settings.DOCKER_API_VERSION
        self.timeout = timeout or settings.DOCKER_TIMEOUT
        self.label_prefix = label_prefix or settings.INSTANCE_LABEL_PREFIX
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            if self.docker_host.startswith("unix://"):
                transport = httpx.AsyncHTTPTransport(uds=self.docker_host[len("unix://"):])
                base_url = "http://docker"
            else:
                transport = None
                base_url = self.docker_host.replace("tcp://", "http://", 1)
            self._client = httpx.AsyncClient(
                base_url=f"{base_url}/{self.api_version}",
                transport=transport,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _label(self, name: str) -> str:
        return f"{self.label_prefix}.{name}"

    async def _request(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RuntimeClientError(operation, str(e)) from e

        if response.status_code >= 400:
            try:
                reason = response.json().get("message", response.text)
            except ValueError:
                reason = response.text
            raise RuntimeClientError(operation, reason, response.status_code)
        return response

    # =========================================================================
    # Images
    # =========================================================================

    async def build_image(self, archive, options: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        params = {
            key: (str(value).lower() if isinstance(value, bool) else value)
            for key, value in options.items()
            if value is not None
        }
        request = self.client.build_request(
            "POST",
            "/build",
            params=params,
            content=archive.read(),
            headers={"Content-Type": "application/x-tar"},
            timeout=None,
        )

        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise RuntimeClientError("build", str(e)) from e

        if response.status_code >= 400:
            body = await response.aread()
            await response.aclose()
            raise RuntimeClientError("build", body.decode(errors="replace"), response.status_code)

        return self._iter_build_messages(response)

    async def _iter_build_messages(self, response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
        try:
            async for line in response.aiter_lines():
                message = _parse_json_line(line)
                if message is not None:
                    yield message
        finally:
            await response.aclose()

    async def find_image(self, tag: str) -> Image:
        response = await self._request("find_image", "GET", f"/images/{tag}/json")
        data = response.json()
        return Image(id=data.get("Id"), tag=tag, raw=data)

    # =========================================================================
    # Containers
    # =========================================================================

    async def inspect_container(self, container_id: str) -> Dict[str, Any]:
        response = await self._request("inspect", "GET", f"/containers/{container_id}/json")
        return response.json()

    async def list_instances(self, system: System, type: str = "daemon") -> List[Instance]:
        filters = {
            "label": [
                f"{self._label('manifest')}={system.manifest.namespace}",
                f"{self._label('system')}={system.name}",
                f"{self._label('type')}={type}",
            ],
            "status": ["running"],
        }
        response = await self._request(
            "list_instances", "GET", "/containers/json",
            params={"filters": json.dumps(filters)},
        )
        # Listed newest first; reversed so containers created in the same second stay oldest first
        instances = [
            Instance(
                id=data["Id"],
                system=system.name,
                type=type,
                created=data.get("Created", 0),
                raw=data,
            )
            for data in reversed(response.json())
        ]
        return sorted(instances, key=lambda instance: instance.created)

    async def stop_instances(self, instances: List[Instance], kill: bool = False) -> None:
        for instance in instances:
            action = "kill" if kill else "stop"
            logger.info(f"{'Killing' if kill else 'Stopping'} instance {instance.id[:12]} of {instance.system}")
            await self._request(action, "POST", f"/containers/{instance.id}/{action}")
            await self._request("remove", "DELETE", f"/containers/{instance.id}", params={"force": "true"})

    async def run_daemon_instance(self, system: System, options: ScaleOptions) -> Instance:
        """
        Create and start a daemon container for a system.

        Provisioning is driven by the manifest layer; ``options.provision_force``
        is recorded on the container as a label.
        """
        if not system.image:
            raise RuntimeClientError("run", f"System {system.name} has no image")

        if options.pull:
            await self._request("pull", "POST", "/images/create", params={"fromImage": system.image}, timeout=None)

        exposed_ports = {port_key(spec): {} for spec in system.ports.values()}
        body = {
            "Image": system.image,
            "Env": [f"{key}={value}" for key, value in (options.envs or {}).items()],
            "Labels": {
                self._label("manifest"): system.manifest.namespace,
                self._label("system"): system.name,
                self._label("type"): settings.DAEMON_INSTANCE_TYPE,
                self._label("provision_force"): str(bool(options.provision_force)).lower(),
            },
            "ExposedPorts": exposed_ports,
            "HostConfig": {"PublishAllPorts": True},
        }
        if system.command:
            body["Cmd"] = list(system.command)

        response = await self._request("create", "POST", "/containers/create", json=body)
        container_id = response.json()["Id"]
        await self._request("start", "POST", f"/containers/{container_id}/start")

        logger.info(f"Started instance {container_id[:12]} of {system.name}")
        return Instance(id=container_id, system=system.name, type=settings.DAEMON_INSTANCE_TYPE)

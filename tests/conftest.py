"""
Pytest configuration and fixtures.

Provides an in-memory container runtime so the build pipeline and the
scaling engine can be exercised without a Docker daemon.
"""
import os

import pytest

# Set environment variables BEFORE any devstack imports
os.environ.setdefault("TRACKER_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "debug")


class FakeRuntime:
    """In-memory ContainerRuntime recording every call."""

    def __init__(self):
        self.instances_by_system = {}
        self.inspect_data = {}
        self.build_messages = []
        self.build_error = None
        self.build_calls = []
        self.run_calls = []
        self.stop_calls = []
        self.list_calls = []
        self.images = {}
        self.closed_streams = 0
        self._next_id = 0

    # Builds

    async def build_image(self, archive, options):
        self.build_calls.append((archive, options))
        if self.build_error is not None:
            raise self.build_error
        return self._stream(list(self.build_messages))

    async def _stream(self, messages):
        try:
            for message in messages:
                yield message
        finally:
            self.closed_streams += 1

    async def find_image(self, tag):
        from devstack.services.runtime.runtime_base import Image

        return self.images.get(tag, Image(id=f"sha256:{tag}", tag=tag))

    # Instances

    def _key(self, system):
        return (system.manifest.namespace, system.name)

    def add_instances(self, system, count, envs=None):
        for _ in range(count):
            self._launch(system, envs or {})

    def _launch(self, system, envs):
        from devstack.services.runtime.runtime_base import Instance

        self._next_id += 1
        instance = Instance(
            id=f"{system.name}-{self._next_id}",
            system=system.name,
            type="daemon",
            created=self._next_id,
        )
        self.instances_by_system.setdefault(self._key(system), []).append(instance)
        self.inspect_data[instance.id] = {
            "Config": {"Env": [f"{k}={v}" for k, v in envs.items()]},
            "NetworkSettings": {
                "Ports": {
                    f"{spec}/tcp" if "/" not in str(spec) else spec: [
                        {"HostIp": "0.0.0.0", "HostPort": str(30000 + self._next_id)}
                    ]
                    for spec in system.ports.values()
                },
            },
        }
        return instance

    def count(self, system):
        return len(self.instances_by_system.get(self._key(system), []))

    async def inspect_container(self, container_id):
        return self.inspect_data[container_id]

    async def list_instances(self, system, type="daemon"):
        self.list_calls.append((system.name, type))
        return list(self.instances_by_system.get(self._key(system), []))

    async def stop_instances(self, instances, kill=False):
        self.stop_calls.append(([i.id for i in instances], kill))
        for instance in instances:
            for running in self.instances_by_system.values():
                if instance in running:
                    running.remove(instance)

    async def run_daemon_instance(self, system, options):
        self.run_calls.append((system.name, options))
        return self._launch(system, dict(options.envs))


class RecordingTracker:
    """Tracker returning a fixed result code."""

    def __init__(self, result=0):
        self.result = result
        self.calls = []

    async def track(self, domain, data):
        self.calls.append((domain, data))
        return self.result


@pytest.fixture
def runtime():
    """Provide an empty in-memory runtime."""
    return FakeRuntime()


@pytest.fixture
def tracker():
    """Provide a tracker that always succeeds."""
    return RecordingTracker()


@pytest.fixture
def dispatcher():
    """Provide an isolated event dispatcher."""
    from devstack.core.events import EventDispatcher
    return EventDispatcher()


@pytest.fixture
def manifest():
    from devstack.services.system.system_base import Manifest
    return Manifest(namespace="project-ns", path="/projects/app/Azkfile.py")


@pytest.fixture
def db_system(manifest):
    """Database system: default 1, unbounded, exports DB_PORT."""
    from devstack.services.system.system_base import Scalable, System
    return System(
        name="db",
        manifest=manifest,
        image="postgres:15",
        scalable=Scalable(default=1, limit=0),
        ports={"data": "5432/tcp"},
        export_envs={
            "DB_PORT": "#{net.port.data}",
            "DB_USER": "#{envs.POSTGRES_USER}",
        },
    )


@pytest.fixture
def web_system(manifest, db_system):
    """Web system: default 1, limit 3, depends on db."""
    from devstack.services.system.system_base import Scalable, System
    return System(
        name="web",
        manifest=manifest,
        image="web:latest",
        scalable=Scalable(default=1, limit=3),
        depends=[db_system],
        ports={"http": "8080"},
    )


@pytest.fixture
def scale_service(runtime, tracker, dispatcher):
    from devstack.services.system.scale_service import ScaleService
    return ScaleService(runtime, tracker=tracker, dispatcher=dispatcher)


@pytest.fixture
def failing_tracker():
    """Provide a tracker reporting an HTTP 500 result."""
    return RecordingTracker(result=500)

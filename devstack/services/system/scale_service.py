"""
Scaling engine for systems.

Brings the number of running daemon instances of a system to a target,
starting its dependencies first and reporting every scale operation to the
tracker.
"""
import asyncio
import logging
import weakref
from contextvars import ContextVar
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from devstack.core.config import settings
from devstack.core.events import EventDispatcher, SystemScaleEvent, event_dispatcher
from devstack.core.exceptions import CircularDependencyError, InvalidScaleTargetError, SystemNotScalable
from devstack.services.runtime.runtime_base import ContainerRuntime, Instance
from devstack.services.system.balancer import BalancerProtocol, NoOpBalancer
from devstack.services.system.dependency_service import DependencyService
from devstack.services.system.system_base import ScaleOptions, System
from devstack.services.system.tracker import TrackerProtocol, calculate_hash, create_tracker

logger = logging.getLogger(__name__)

OptionsLike = Union[ScaleOptions, Dict[str, Any], None]

# Systems whose scale lock is held by the current task
_held_systems: ContextVar[FrozenSet[Tuple[str, str]]] = ContextVar("held_systems", default=frozenset())


def merge_options(base: OptionsLike, override: OptionsLike) -> ScaleOptions:
    """
    Merge two option sets, ``override`` winning.

    Dict overrides only replace the keys they carry; envs are merged key by key.
    """
    merged = ScaleOptions.from_value(base)
    if override is None:
        return merged

    if isinstance(override, ScaleOptions):
        values = {
            "dependencies": override.dependencies,
            "pull": override.pull,
            "provision_force": override.provision_force,
            "envs": override.envs,
        }
    elif isinstance(override, dict):
        values = override
    else:
        raise TypeError(f"Cannot merge scale options from {type(override).__name__}")

    for key, value in values.items():
        if key == "envs":
            merged.envs = {**merged.envs, **(value or {})}
        elif key in ScaleOptions.__dataclass_fields__:
            setattr(merged, key, value)
    return merged


class ScaleService:
    """
    Service for scaling systems.

    Responsibilities:
    - Compute and apply instance deltas under the system's limit
    - Start dependencies and inject their exported environment
    - Stop the most recent instances when scaling down
    - Report scale events to the tracker

    Scale operations on the same system are serialized, so the limit check
    and the launches happen against a count no other caller can change.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        balancer: Optional[BalancerProtocol] = None,
        tracker: Optional[TrackerProtocol] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        """
        Initialize ScaleService.

        Args:
            runtime: Container runtime client
            balancer: Load balancer registrations (cleared by kill_all)
            tracker: Telemetry tracker for scale events
            dispatcher: Event dispatcher for scale notifications
        """
        self.runtime = runtime
        self.balancer = balancer or NoOpBalancer()
        self.tracker = tracker or create_tracker()
        self.dispatcher = dispatcher or event_dispatcher
        self.dependency_service = DependencyService(runtime, self)
        # Entries live only while a scale call holds or waits on the lock
        self._locks = weakref.WeakValueDictionary()

    @staticmethod
    def _system_key(system: System) -> Tuple[str, str]:
        return (system.manifest.namespace, system.name)

    def _lock_for(self, system: System) -> asyncio.Lock:
        return self._locks.setdefault(self._system_key(system), asyncio.Lock())

    async def _acquire(self, system: System):
        key = self._system_key(system)
        held = _held_systems.get()
        if key in held:
            raise CircularDependencyError(system.name)

        lock = self._lock_for(system)
        await lock.acquire()
        token = _held_systems.set(held | {key})
        return lock, token

    @staticmethod
    def _release(lock: asyncio.Lock, token) -> None:
        _held_systems.reset(token)
        lock.release()

    async def instances(self, system: System, type: str = None) -> List[Instance]:
        """Currently running instances of a system (daemon type by default)."""
        return await self.runtime.list_instances(system, type=type or settings.DAEMON_INSTANCE_TYPE)

    async def start(self, system: System, options: OptionsLike = None) -> int:
        """Scale a system to its default number of instances."""
        return await self.scale(system, options)

    async def scale(
        self,
        system: System,
        instances: Union[int, ScaleOptions, Dict[str, Any], None] = None,
        options: OptionsLike = None,
    ) -> int:
        """
        Scale a system to a number of instances.

        Args:
            system: System to scale
            instances: Target instance count. Options (or None) use the
                system's default count, the options being merged under
                ``options``
            options: ScaleOptions or dict (envs, dependencies, pull,
                provision_force)

        Returns:
            Signed number of instances started (positive) or stopped
            (negative)

        Raises:
            InvalidScaleTargetError: Target is negative
            SystemNotScalable: Target exceeds the system's limit
            SystemDependError: A dependency is missing and may not be started
        """
        if instances is None or isinstance(instances, (dict, ScaleOptions)):
            options = merge_options(instances, options)
            instances = system.scalable.default
        else:
            options = merge_options(None, options)

        instances = int(instances)
        if instances < 0:
            raise InvalidScaleTargetError(system.name, instances)

        lock, token = await self._acquire(system)
        try:
            return await self._scale(system, instances, options)
        finally:
            self._release(lock, token)

    async def _scale(self, system: System, target: int, options: ScaleOptions) -> int:
        containers = await self.instances(system)

        count_from = len(containers)
        delta = target - count_from

        limit = system.scalable.limit
        if limit > 0 and delta > 0 and count_from + delta > limit:
            raise SystemNotScalable(system.name, limit=limit, requested=target)

        if delta != 0:
            logger.info(f"Scaling {system.name} from {count_from} to {count_from + delta} instances")
            await self.dispatcher.dispatch(
                SystemScaleEvent(system=system.name, from_count=count_from, to_count=count_from + delta)
            )

        if delta > 0:
            deps_envs = await self.dependency_service.resolve_dependency_envs(system, options)
            options.envs = {**deps_envs, **(options.envs or {})}

            for _ in range(delta):
                await self.runtime.run_daemon_instance(system, ScaleOptions.from_value(options))
                options.provision_force = False
        elif delta < 0:
            to_stop = list(reversed(containers))[:abs(delta)]
            await self.runtime.stop_instances(to_stop)

        await self._track("scale", system, count_from, count_from + delta)
        return delta

    async def kill_all(self, system: System, kill: bool = True) -> None:
        """
        Stop every running instance of a system regardless of its policy.

        Args:
            system: System to stop
            kill: Kill the containers instead of a graceful stop
        """
        lock, token = await self._acquire(system)
        try:
            await self.balancer.clear(system)
            instances = await self.instances(system)
            logger.info(f"Stopping all {len(instances)} instances of {system.name}")
            await self.runtime.stop_instances(instances, kill=kill)
        finally:
            self._release(lock, token)

    async def _track(self, event_type: str, system: System, count_from: int, count_to: int) -> None:
        """Report a scale event. Failures are logged only."""
        manifest_id = system.manifest.namespace
        data = {
            "event_type": event_type,
            "manifest_id": manifest_id,
            "from_num_containers": count_from,
            "to_num_containers": count_to,
            "hash_system": calculate_hash(f"{manifest_id}{system.name}")[:8],
        }

        try:
            result = await self.tracker.track("system", data)
        except Exception as e:
            logger.error(f"Tracker failed for {system.name}: {e}")
            return

        if result != 0:
            logger.error(f"Tracker result for {system.name}: {result}")

"""
System definitions consumed by the scaling engine.

Systems are produced by manifest evaluation, which lives outside this
package. The core only reads them.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Manifest:
    """The manifest a system was evaluated from (opaque to the core)."""

    namespace: str
    path: Optional[str] = None


@dataclass
class Scalable:
    """Scaling policy. A limit of 0 (or below) means unbounded."""

    default: int = 1
    limit: int = 0


@dataclass
class ScaleOptions:
    """Options for a scale operation."""

    envs: Dict[str, str] = field(default_factory=dict)
    dependencies: bool = True
    pull: Optional[bool] = None
    provision_force: Optional[bool] = None

    @classmethod
    def from_value(cls, value: Any) -> "ScaleOptions":
        """Build options from None, a dict or an existing ScaleOptions."""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return cls(
                envs=dict(value.envs or {}),
                dependencies=value.dependencies,
                pull=value.pull,
                provision_force=value.provision_force,
            )
        if isinstance(value, dict):
            known = {k: v for k, v in value.items() if k in cls.__dataclass_fields__}
            options = cls(**known)
            options.envs = dict(options.envs or {})
            return options
        raise TypeError(f"Cannot build ScaleOptions from {type(value).__name__}")


# Matches #{envs.NAME}, #{net.port.NAME}, #{system.name}, ...
_PLACEHOLDER = re.compile(r"#\{\s*([\w.]+)\s*\}")


@dataclass(eq=False)
class System:
    """
    A named service definition.

    ``export_envs`` is the template of environment variables a system
    exposes to its dependents. Values may reference the inspected instance
    with ``#{envs.NAME}`` and ``#{net.port.NAME}``, or the system itself with
    ``#{system.name}`` and ``#{manifest.namespace}``.
    """

    name: str
    manifest: Manifest
    image: Optional[str] = None
    scalable: Scalable = field(default_factory=Scalable)
    depends: List["System"] = field(default_factory=list)
    export_envs: Dict[str, str] = field(default_factory=dict)
    ports: Dict[str, str] = field(default_factory=dict)
    command: Optional[List[str]] = None

    def expand_export_envs(
        self,
        envs: Optional[Dict[str, str]] = None,
        net: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, str]:
        """
        Render export_envs against an inspected instance.

        Args:
            envs: Environment variables of the instance
            net: Network data, ``{"port": {name: host_port}}``

        Returns:
            Dict of exported variables. Unknown placeholders render empty.
        """
        context = {
            "envs": envs or {},
            "net": net or {"port": {}},
            "system": {"name": self.name},
            "manifest": {"namespace": self.manifest.namespace},
        }

        def lookup(match: "re.Match") -> str:
            value: Any = context
            for part in match.group(1).split("."):
                if not isinstance(value, dict) or part not in value:
                    return ""
                value = value[part]
            return "" if value is None else str(value)

        return {
            key: _PLACEHOLDER.sub(lookup, str(template))
            for key, template in self.export_envs.items()
        }

    def __repr__(self) -> str:
        return f"System(name={self.name!r}, manifest={self.manifest.namespace!r})"

"""
Custom exception hierarchy for domain-specific errors.

Services raise domain exceptions carrying a human readable message plus a
``details`` dict with enough structured context to render a diagnostic
without re-running the failed operation.
"""
from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(DomainException):
    """Base class for validation errors."""
    pass


class InvalidImageTagError(ValidationError):
    """Docker image tag is invalid."""

    def __init__(self, tag: str, reason: str):
        super().__init__(f"Invalid image tag '{tag}': {reason}", {"tag": tag, "reason": reason})


class InvalidScaleTargetError(ValidationError):
    """Requested instance count is negative."""

    def __init__(self, system: str, requested: int):
        super().__init__(
            f"Cannot scale system {system} to {requested} instances",
            {"system": system, "requested": requested}
        )


# =============================================================================
# Operation Errors
# =============================================================================

class OperationError(DomainException):
    """Base class for operation failures."""
    pass


class RuntimeClientError(OperationError):
    """Container runtime call failed."""

    def __init__(self, operation: str, reason: str, status_code: Optional[int] = None):
        super().__init__(
            f"Container runtime {operation} failed: {reason}",
            {"operation": operation, "reason": reason, "status_code": status_code}
        )
        self.status_code = status_code


class DockerBuildError(OperationError):
    """
    Image build failed.

    ``kind`` is one of the class constants below. Every error carries the Dockerfile
    path, the last base image seen in the build stream (``from_stage``) and
    the output accumulated up to the failure.
    """

    CANNOT_FIND_DOCKERFILE = "cannot_find_dockerfile"
    SERVER_ERROR = "server_error"
    NOT_FOUND = "not_found"
    COMMAND_ERROR = "command_error"
    UNKNOWN_INSTRUCTION_ERROR = "unknow_instruction_error"
    UNEXPECTED_ERROR = "unexpected_error"

    _MESSAGES = {
        CANNOT_FIND_DOCKERFILE: "Cannot find Dockerfile: {dockerfile}",
        SERVER_ERROR: "Docker server error while building {dockerfile}: {err}",
        NOT_FOUND: "Base image {from_stage} not found for {dockerfile}",
        COMMAND_ERROR: "Command failed while building {dockerfile}:\n{output}",
        UNKNOWN_INSTRUCTION_ERROR: "Unknown instruction {instruction} in {dockerfile}",
        UNEXPECTED_ERROR: "Unexpected error while building {dockerfile}:\n{output}",
    }

    def __init__(
        self,
        kind: str,
        dockerfile: str,
        from_stage: Optional[str] = None,
        output: str = "",
        **extra: Any,
    ):
        if kind not in self._MESSAGES:
            raise ValueError(f"Unknown build error kind: {kind}")

        details = {"dockerfile": dockerfile, "from_stage": from_stage, "output": output}
        details.update(extra)
        message = self._MESSAGES[kind].format_map(_MissingAsEmpty(details))

        super().__init__(message, {"kind": kind, **details})
        self.kind = kind
        self.dockerfile = dockerfile
        self.from_stage = from_stage
        self.output = output
        self.extra = extra


class _MissingAsEmpty(dict):
    def __missing__(self, key):
        return ""


# =============================================================================
# System Errors
# =============================================================================

class SystemDependError(OperationError):
    """A required dependency has no running instance and cascading is disabled."""

    def __init__(self, system: str, dependency: str):
        super().__init__(
            f"System {system} depends on {dependency}, which is not running",
            {"system": system, "dependency": dependency}
        )
        self.system = system
        self.dependency = dependency


class CircularDependencyError(SystemDependError):
    """A system ended up depending on itself while being scaled."""

    def __init__(self, system: str):
        super().__init__(system, system)
        self.message = f"Circular dependency on system {system}"
        self.args = (self.message,)


class SystemNotScalable(OperationError):
    """Requested scale-up would exceed the system's instance limit."""

    def __init__(self, system: str, limit: Optional[int] = None, requested: Optional[int] = None):
        details = {"system": system}
        if limit is not None:
            details["limit"] = limit
        if requested is not None:
            details["requested"] = requested
        super().__init__(f"System {system} cannot be scaled beyond its limit", details)
        self.system = system

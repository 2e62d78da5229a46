"""
Domain event system for loose coupling between services.

This module provides a simple in-process event dispatcher. Build progress and
scale notifications are published here so that output sinks (terminal UI,
log collectors) can follow an operation without the services knowing about
them.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type

logger = logging.getLogger(__name__)


# =============================================================================
# Base Event Classes
# =============================================================================

@dataclass
class DomainEvent:
    """Base class for all domain events."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def event_type(self) -> str:
        """Return the event type name."""
        return self.__class__.__name__


# =============================================================================
# Docker Build Events
# =============================================================================

@dataclass
class DockerBuildStatusEvent(DomainEvent):
    """Emitted for every build stream line recognised as a build stage."""
    tag: str = None
    stage_type: str = None
    value: Optional[str] = None
    line: str = None


@dataclass
class DockerBuildCompletedEvent(DomainEvent):
    """Emitted when an image build completes successfully."""
    tag: str = None
    image_id: str = None


@dataclass
class DockerBuildFailedEvent(DomainEvent):
    """Emitted when an image build fails."""
    tag: str = None
    kind: str = None
    error_message: str = None


# =============================================================================
# System Events
# =============================================================================

@dataclass
class SystemScaleEvent(DomainEvent):
    """Emitted before a system's instance count changes."""
    system: str = None
    from_count: int = 0
    to_count: int = 0


# =============================================================================
# Event Dispatcher
# =============================================================================

class EventDispatcher:
    """
    Simple in-process event dispatcher.

    Handlers are registered per event type. A failing handler is logged and
    never aborts the operation that published the event.
    """

    def __init__(self):
        self._handlers: Dict[Type[DomainEvent], List[Callable]] = {}

    def register(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], Any],
    ) -> None:
        """
        Register a handler for an event type.

        Args:
            event_type: The event class to handle
            handler: Callable (sync or async) that takes the event as argument
        """
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Registered handler {_handler_name(handler)} for {event_type.__name__}")

    def unregister(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], Any],
    ) -> None:
        """Unregister a handler for an event type."""
        if event_type in self._handlers:
            self._handlers[event_type] = [
                h for h in self._handlers[event_type] if h != handler
            ]

    async def dispatch(self, event: DomainEvent) -> None:
        """
        Dispatch an event to all registered handlers.

        Handlers can be either sync or async functions.
        """
        event_type = type(event)
        handlers = list(self._handlers.get(event_type, []))

        logger.debug(f"Dispatching {event_type.__name__} to {len(handlers)} handlers")

        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Handler {_handler_name(handler)} failed for {event_type.__name__}: {e}"
                )


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


# Global event dispatcher instance
event_dispatcher = EventDispatcher()

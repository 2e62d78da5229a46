"""
Tests for the domain event dispatcher and settings.

Run with: pytest tests/test_events.py -v
"""
import pytest

from devstack.core.events import DockerBuildStatusEvent, EventDispatcher, SystemScaleEvent


class TestEventDispatcher:
    """Tests for EventDispatcher."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        dispatcher = EventDispatcher()
        received = []

        async def async_handler(event):
            received.append(("async", event.system))

        dispatcher.register(SystemScaleEvent, lambda event: received.append(("sync", event.system)))
        dispatcher.register(SystemScaleEvent, async_handler)

        await dispatcher.dispatch(SystemScaleEvent(system="db", from_count=0, to_count=1))

        assert received == [("sync", "db"), ("async", "db")]

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self):
        dispatcher = EventDispatcher()
        received = []

        def broken(event):
            raise RuntimeError("sink closed")

        dispatcher.register(DockerBuildStatusEvent, broken)
        dispatcher.register(DockerBuildStatusEvent, received.append)

        await dispatcher.dispatch(DockerBuildStatusEvent(tag="app", stage_type="building_from"))

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unregister(self):
        dispatcher = EventDispatcher()
        received = []
        dispatcher.register(SystemScaleEvent, received.append)
        dispatcher.unregister(SystemScaleEvent, received.append)

        await dispatcher.dispatch(SystemScaleEvent(system="db"))

        assert received == []

    def test_event_type_name(self):
        assert SystemScaleEvent().event_type == "SystemScaleEvent"


class TestSettings:
    def test_log_level_normalized(self):
        from devstack.core.config import Settings

        assert Settings(LOG_LEVEL="WARNING").LOG_LEVEL == "warning"

    def test_unknown_log_level_rejected(self):
        from pydantic import ValidationError

        from devstack.core.config import Settings

        with pytest.raises(ValidationError):
            Settings(LOG_LEVEL="chatty")

    def test_configure_logging_tags_app_name(self):
        from unittest.mock import patch

        from devstack.core.config import configure_logging, settings

        with patch("logging.basicConfig") as basic_config:
            configure_logging("warning")

        kwargs = basic_config.call_args.kwargs
        assert kwargs["level"] == "WARNING"
        assert settings.APP_NAME in kwargs["format"]

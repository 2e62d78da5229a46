"""
Tests for telemetry trackers.

Run with: pytest tests/test_tracker.py -v
"""
import json
from unittest.mock import patch

import httpx
import pytest

from devstack.services.system.tracker import (
    HttpTracker,
    NoOpTracker,
    calculate_hash,
    create_tracker,
)


def _tracker(handler, api_key=""):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpTracker(url="http://collector/events", api_key=api_key, client=client)


class TestHttpTracker:
    """Tests for HttpTracker."""

    @pytest.mark.asyncio
    async def test_success_returns_zero(self):
        seen = {}

        def handler(request):
            seen["payload"] = json.loads(request.content)
            seen["api_key"] = request.headers.get("x-api-key")
            return httpx.Response(201)

        result = await _tracker(handler, api_key="secret").track("system", {"event_type": "scale"})

        assert result == 0
        assert seen["payload"] == {"domain": "system", "data": {"event_type": "scale"}}
        assert seen["api_key"] == "secret"

    @pytest.mark.asyncio
    async def test_http_error_returns_status(self):
        result = await _tracker(lambda request: httpx.Response(503)).track("system", {})

        assert result == 503

    @pytest.mark.asyncio
    async def test_transport_error_returns_minus_one(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert await _tracker(handler).track("system", {}) == -1


class TestCreateTracker:
    def test_disabled_uses_noop(self):
        with patch("devstack.services.system.tracker.settings") as mock_settings:
            mock_settings.TRACKER_ENABLED = False
            assert isinstance(create_tracker(), NoOpTracker)

    def test_enabled_uses_http(self):
        with patch("devstack.services.system.tracker.settings") as mock_settings:
            mock_settings.TRACKER_ENABLED = True
            mock_settings.TRACKER_URL = "http://collector/events"
            mock_settings.TRACKER_API_KEY = ""
            mock_settings.TRACKER_TIMEOUT = 1.0
            assert isinstance(create_tracker(), HttpTracker)

    @pytest.mark.asyncio
    async def test_noop_succeeds(self):
        assert await NoOpTracker().track("system", {"event_type": "scale"}) == 0


def test_calculate_hash_is_sha1():
    assert calculate_hash("abc") == "a9993e364706816aba3e25717850c26c9cd0d89d"

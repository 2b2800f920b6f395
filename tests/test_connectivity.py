"""Tests for ConnectivityMonitor."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import httpx

from adventure_sync import ConnectivityMonitor

PROBE_URL = "https://project.supabase.co/auth/v1/health"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestSetOnline:
    """Tests for host-reported transitions."""

    def test_starts_online(self) -> None:
        """Test the initial status."""
        assert ConnectivityMonitor().current_status() is True

    def test_reconnect_fires_callbacks(self) -> None:
        """Test that offline -> online calls every callback once."""
        monitor = ConnectivityMonitor()
        callback = MagicMock()
        monitor.on_reconnect(callback)

        monitor.set_online(False)
        monitor.set_online(True)

        callback.assert_called_once_with()

    def test_repeated_status_does_not_fire(self) -> None:
        """Test that online -> online is not a reconnect."""
        monitor = ConnectivityMonitor()
        callback = MagicMock()
        monitor.on_reconnect(callback)

        monitor.set_online(True)
        monitor.set_online(False)
        monitor.set_online(False)

        callback.assert_not_called()
        assert not monitor.is_online

    def test_failing_callback_does_not_block_others(self) -> None:
        """Test that one broken callback does not stop the rest."""
        monitor = ConnectivityMonitor()
        broken = MagicMock(side_effect=RuntimeError("boom"))
        working = MagicMock()
        monitor.on_reconnect(broken)
        monitor.on_reconnect(working)

        monitor.set_online(False)
        monitor.set_online(True)

        working.assert_called_once_with()
        assert monitor.current_status()

    def test_async_callback_is_awaited(self) -> None:
        """Test that coroutine callbacks run on the current loop."""
        calls: list[str] = []

        async def on_reconnect() -> None:
            calls.append("reconnected")

        async def scenario() -> None:
            monitor = ConnectivityMonitor()
            monitor.on_reconnect(on_reconnect)
            monitor.set_online(False)
            monitor.set_online(True)
            await asyncio.sleep(0)
            await asyncio.sleep(0)

        asyncio.run(scenario())

        assert calls == ["reconnected"]


class TestProbe:
    """Tests for probing the backend."""

    def test_probe_without_url_keeps_status(self) -> None:
        """Test that a monitor without a probe URL relies on the host."""
        monitor = ConnectivityMonitor()
        monitor.set_online(False)

        assert asyncio.run(monitor.probe()) is False

    def test_probe_connect_error_goes_offline(self) -> None:
        """Test that an unreachable backend marks the monitor offline."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        async def scenario() -> bool:
            async with _client(handler) as client:
                monitor = ConnectivityMonitor(PROBE_URL, client=client)
                result = await monitor.probe()
                assert monitor.current_status() is False
                return result

        assert asyncio.run(scenario()) is False

    def test_probe_any_response_is_online(self) -> None:
        """Test that any HTTP answer, even an error status, counts as reachable."""
        callback = MagicMock()

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == PROBE_URL
            return httpx.Response(401, json={"message": "no api key"})

        async def scenario() -> bool:
            async with _client(handler) as client:
                monitor = ConnectivityMonitor(PROBE_URL, client=client)
                monitor.on_reconnect(callback)
                monitor.set_online(False)
                return await monitor.probe()

        assert asyncio.run(scenario()) is True
        callback.assert_called_once_with()

    def test_start_and_stop_background_probe(self) -> None:
        """Test that the probe loop runs until stopped."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200)

        async def scenario() -> None:
            async with _client(handler) as client:
                monitor = ConnectivityMonitor(PROBE_URL, check_interval=0.01, client=client)
                monitor.start()
                assert monitor.is_running
                await asyncio.sleep(0.05)
                await monitor.stop()
                assert not monitor.is_running

        asyncio.run(scenario())

        assert len(requests) >= 1

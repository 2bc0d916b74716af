"""Tests for the session pool."""

import asyncio
from unittest.mock import MagicMock

import pytest

from vcenter_migrator.core.channel import CommandChannel
from vcenter_migrator.core.exceptions import (
    ChannelError,
    ConnectError,
    CredentialError,
    SessionNotConnected,
)
from vcenter_migrator.core.results import Err, Ok
from vcenter_migrator.core.session_pool import SessionPool
from vcenter_migrator.models.enums import ConnectionSide

from .helpers import PASSWORD, SOURCE_SERVER, TARGET_SERVER, USERNAME, FakeChannel

SOURCE = ConnectionSide.SOURCE
TARGET = ConnectionSide.TARGET


class TestConnect:
    async def test_connect_returns_handle(self, pool, channels):
        result = await pool.connect(SOURCE, SOURCE_SERVER, USERNAME, PASSWORD)

        assert isinstance(result, Ok)
        handle = result.value
        assert handle.side is SOURCE
        assert handle.server_address == SOURCE_SERVER
        assert handle.session_id == "src-42"
        assert handle.protocol_version == "8.0.2"
        assert channels[SOURCE].open_count == 1

    async def test_connect_twice_reuses_handle(self, pool, channels):
        first = await pool.connect(SOURCE, SOURCE_SERVER, USERNAME, PASSWORD)
        second = await pool.connect(SOURCE, SOURCE_SERVER, USERNAME, PASSWORD)

        assert second.value is first.value
        assert channels[SOURCE].connect_calls == 1
        assert pool.get_stats()["connects_reused"] == 1

    async def test_reconnect_ignores_case_of_server_and_user(self, pool, channels):
        await pool.connect(SOURCE, SOURCE_SERVER, USERNAME, PASSWORD)
        await pool.connect(SOURCE, SOURCE_SERVER.upper(), USERNAME.upper(), PASSWORD)
        assert channels[SOURCE].connect_calls == 1

    async def test_connect_to_other_endpoint_replaces_session(self, pool, channels):
        await pool.connect(SOURCE, SOURCE_SERVER, USERNAME, PASSWORD)
        result = await pool.connect(SOURCE, "vc-other.lab.local", USERNAME, PASSWORD)

        assert isinstance(result, Ok)
        assert result.value.server_address == "vc-other.lab.local"
        assert channels[SOURCE].connect_calls == 2
        assert channels[SOURCE].disconnect_calls == 1

    async def test_connect_failure_leaves_no_handle(self, pool, channels):
        channels[SOURCE].connect_output = "CONNECTION_FAILED:Cannot complete login due to an incorrect user name or password."

        result = await pool.connect(SOURCE, SOURCE_SERVER, USERNAME, "wrong")

        assert isinstance(result, Err)
        assert isinstance(result.error, ConnectError)
        assert "incorrect user name" in result.error.reason
        assert pool.get_handle(SOURCE) is None
        assert pool.get_connection_info(SOURCE).is_connected is False
        assert pool.status_text(SOURCE).startswith("Connection error:")

    async def test_connect_timeout(self, pool, channels, settings):
        settings.connect_timeout = 0.05

        async def slow_connect(body, parameters=None):
            await asyncio.sleep(1)
            return "CONNECTION_SUCCESS"

        channels[SOURCE].invoke = slow_connect

        result = await pool.connect(SOURCE, SOURCE_SERVER, USERNAME, PASSWORD)

        assert isinstance(result, Err)
        assert "timed out" in result.error.reason
        assert pool.get_handle(SOURCE) is None

    async def test_connect_with_credentials_uses_provider(self, pool, channels):
        result = await pool.connect_with_credentials(SOURCE, SOURCE_SERVER, USERNAME)
        assert isinstance(result, Ok)
        assert channels[SOURCE].connect_calls == 1

    async def test_missing_password_is_a_hard_stop(self, pool, channels):
        result = await pool.connect_with_credentials(SOURCE, "unknown.lab.local", USERNAME)

        assert isinstance(result, Err)
        assert "No stored password" in result.error.reason
        assert channels[SOURCE].connect_calls == 0
        assert channels[SOURCE].open_count == 0

    async def test_credential_store_failure_stops_connect(self, channels, events, settings):
        store = MagicMock()
        store.get_password.side_effect = CredentialError("keyring locked")
        pool = SessionPool(
            lambda side: channels[side], credentials=store, events=events, settings=settings
        )

        result = await pool.connect_with_credentials(SOURCE, SOURCE_SERVER, USERNAME)

        assert isinstance(result, Err)
        assert result.error.reason == "Credential lookup failed: keyring locked"
        assert pool.status_text(SOURCE) == "Connection error: Credential lookup failed: keyring locked"
        assert channels[SOURCE].connect_calls == 0


class TestSessionIsolation:
    async def test_sides_have_distinct_sessions(self, connected_pool, channels):
        source_info = connected_pool.get_connection_info(SOURCE)
        target_info = connected_pool.get_connection_info(TARGET)

        assert source_info.session_id == "src-42"
        assert target_info.session_id == "tgt-17"

    async def test_session_yields_channel_of_requested_side(self, connected_pool, channels):
        async with connected_pool.session(SOURCE) as channel:
            assert channel is channels[SOURCE]
        async with connected_pool.session(TARGET) as channel:
            assert channel is channels[TARGET]

    async def test_session_requires_connection(self, pool):
        with pytest.raises(SessionNotConnected):
            async with pool.session(TARGET):
                pass

    async def test_session_with_dead_process_clears_handle(self, connected_pool, channels):
        channels[SOURCE].drop()

        with pytest.raises(SessionNotConnected):
            async with connected_pool.session(SOURCE):
                pass
        assert connected_pool.get_handle(SOURCE) is None


class TestLiveness:
    async def test_is_connected_without_handle(self, pool, channels):
        assert await pool.is_connected(SOURCE) is False
        assert channels[SOURCE].probe_calls == 0

    async def test_is_connected_uses_cached_state(self, connected_pool, channels):
        assert await connected_pool.is_connected(SOURCE) is True
        assert channels[SOURCE].probe_calls == 0

    async def test_is_connected_probes_when_cache_expired(self, connected_pool, channels, settings):
        settings.health_cache_ttl = 0

        assert await connected_pool.is_connected(SOURCE) is True
        assert channels[SOURCE].probe_calls == 1
        assert connected_pool.get_handle(SOURCE).last_health_check is not None

    async def test_is_connected_does_not_wait_for_busy_session(
        self, connected_pool, channels, settings
    ):
        settings.health_cache_ttl = 0
        release = asyncio.Event()

        async def hold():
            async with connected_pool.session(SOURCE):
                await release.wait()

        task = asyncio.create_task(hold())
        await asyncio.sleep(0)

        assert await connected_pool.is_connected(SOURCE) is True
        assert channels[SOURCE].probe_calls == 0

        release.set()
        await task

    async def test_probe_failure_clears_handle(self, connected_pool, channels, events):
        seen = []
        events.subscribe(seen.append)
        channels[SOURCE].remote_connected = False

        assert await connected_pool.probe(SOURCE) is False
        assert connected_pool.get_handle(SOURCE) is None
        assert channels[SOURCE].close_count == 1
        assert connected_pool.status_text(SOURCE) == (
            "Connection error: vCenter session is no longer connected"
        )
        assert [e.phase for e in seen] == ["connection_health_changed"]
        assert seen[0].data["connected"] is False

    async def test_probe_waits_for_running_command(self, connected_pool, channels):
        order = []
        release = asyncio.Event()

        async def command():
            async with connected_pool.session(SOURCE):
                order.append("command start")
                await release.wait()
                order.append("command end")

        task = asyncio.create_task(command())
        await asyncio.sleep(0)
        probe = asyncio.create_task(connected_pool.probe(SOURCE))
        await asyncio.sleep(0)
        assert channels[SOURCE].probe_calls == 0

        release.set()
        await task
        assert await probe is True
        assert order == ["command start", "command end"]
        assert channels[SOURCE].probe_calls == 1


class TestDisconnect:
    async def test_disconnect_clears_handle(self, connected_pool, channels):
        await connected_pool.disconnect(SOURCE)

        assert connected_pool.get_handle(SOURCE) is None
        assert channels[SOURCE].disconnect_calls == 1
        assert connected_pool.status_text(SOURCE) == "Not connected"
        assert connected_pool.get_handle(TARGET) is not None

    async def test_disconnect_when_not_connected(self, pool, channels):
        await pool.disconnect(SOURCE)
        assert channels[SOURCE].disconnect_calls == 0
        assert pool.status_text(SOURCE) == "Not connected"

    async def test_disconnect_clears_handle_even_if_remote_fails(self, connected_pool, channels):
        async def broken(body, parameters=None):
            raise ChannelError("pipe closed")

        channels[SOURCE].invoke = broken
        await connected_pool.disconnect(SOURCE)
        assert connected_pool.get_handle(SOURCE) is None

    async def test_close_all(self, connected_pool, channels):
        await connected_pool.close_all()

        for side in ConnectionSide:
            assert connected_pool.get_handle(side) is None
            assert channels[side].close_count == 1

    async def test_channel_factory_error_is_a_connect_error(self, credentials, events, settings):
        def factory(side):
            raise ChannelError("PowerShell not found on PATH")

        pool = SessionPool(factory, credentials=credentials, events=events, settings=settings)
        result = await pool.connect(SOURCE, SOURCE_SERVER, USERNAME, PASSWORD)

        assert isinstance(result, Err)
        assert "PowerShell not found" in result.error.reason


class TestStatus:
    async def test_status_texts(self, pool):
        assert pool.status_text(TARGET) == "Not connected"
        await pool.connect(TARGET, TARGET_SERVER, USERNAME, PASSWORD)
        assert pool.status_text(TARGET) == "Connected"

    async def test_connection_info_unpacks(self, connected_pool):
        connected, session_id, version = connected_pool.get_connection_info(TARGET)
        assert connected is True
        assert session_id == "tgt-17"
        assert version == "8.0.2"

    async def test_stats(self, connected_pool):
        stats = connected_pool.get_stats()
        assert stats["connects"] == 2
        assert sorted(stats["connected_sides"]) == ["source", "target"]

    def test_fake_channel_is_a_command_channel(self):
        assert isinstance(FakeChannel(SOURCE), CommandChannel)

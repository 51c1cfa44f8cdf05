"""Tests for the network control side channel."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from debug_agent.recording.control import NetworkControlServer
from debug_agent.recording.network import NETWORK_PRESETS, NetworkConditions


@pytest.fixture
def controller():
    """A recorder stand-in currently on Fast 3G."""
    controller = MagicMock()
    controller.network_state = MagicMock(return_value=(NETWORK_PRESETS["Fast 3G"], "Fast 3G"))
    controller.apply_network_preset = AsyncMock(return_value=True)
    controller.apply_custom_conditions = AsyncMock()
    return controller


def make_websocket(messages, path="/debug-agent"):
    websocket = MagicMock()
    websocket.request.path = path
    websocket.remote_address = ("127.0.0.1", 50000)
    websocket.send = AsyncMock()
    websocket.close = AsyncMock()
    websocket.__aiter__.return_value = messages
    return websocket


class TestNetworkControlServerInit:
    """Tests for NetworkControlServer initialization."""

    def test_init_default(self, controller):
        """Test server defaults."""
        server = NetworkControlServer(controller)

        assert server.host == "localhost"
        assert server.port == 9229
        assert server.path == "/debug-agent"
        assert server._server is None
        assert server.client_count == 0

    @pytest.mark.asyncio
    async def test_stop_no_server(self, controller):
        """Test stopping a server that never started."""
        server = NetworkControlServer(controller)
        await server.stop()  # Should not raise

    @pytest.mark.asyncio
    async def test_stop(self, controller):
        """Test stopping closes the server."""
        server = NetworkControlServer(controller)
        ws_server = MagicMock()
        ws_server.close = MagicMock()
        ws_server.wait_closed = AsyncMock()
        server._server = ws_server

        await server.stop()

        ws_server.close.assert_called_once()
        ws_server.wait_closed.assert_awaited_once()
        assert server._server is None


class TestHandleMessage:
    """Tests for NetworkControlServer.handle_message."""

    @pytest.mark.asyncio
    async def test_get_network_conditions(self, controller):
        """Test the current conditions are reported."""
        server = NetworkControlServer(controller)

        response = await server.handle_message({"type": "getNetworkConditions"})

        assert response == {
            "type": "networkConditions",
            "conditions": NETWORK_PRESETS["Fast 3G"].to_dict(),
            "preset": "Fast 3G",
        }

    @pytest.mark.asyncio
    async def test_get_presets(self, controller):
        """Test the preset table is reported."""
        server = NetworkControlServer(controller)

        response = await server.handle_message({"type": "getPresets"})

        assert response["type"] == "presets"
        assert response["presets"]["Slow 3G"]["latency"] == 2000

    @pytest.mark.asyncio
    async def test_set_preset(self, controller):
        """Test setting a preset applies it."""
        server = NetworkControlServer(controller)

        response = await server.handle_message({"type": "setNetworkConditions", "preset": "Slow 3G"})

        controller.apply_network_preset.assert_awaited_once_with("Slow 3G", from_extension=True)
        assert response["type"] == "networkConditions"

    @pytest.mark.asyncio
    async def test_legacy_alias(self, controller):
        """Test legacy message names are accepted."""
        server = NetworkControlServer(controller)

        await server.handle_message({"type": "applyNetworkConditions", "preset": "Offline"})

        controller.apply_network_preset.assert_awaited_once_with("Offline", from_extension=True)

    @pytest.mark.asyncio
    async def test_unknown_preset(self, controller):
        """Test an unknown preset is an error."""
        controller.apply_network_preset = AsyncMock(return_value=False)
        server = NetworkControlServer(controller)

        response = await server.handle_message({"type": "setNetworkConditions", "preset": "Dial-up"})

        assert response["type"] == "error"
        assert "Dial-up" in response["error"]

    @pytest.mark.asyncio
    async def test_set_custom_conditions(self, controller):
        """Test custom conditions are applied."""
        server = NetworkControlServer(controller)
        wire = {"offline": False, "downloadThroughput": 1000, "uploadThroughput": 500, "latency": 80}

        await server.handle_message({"type": "setNetworkConditions", "conditions": wire})

        controller.apply_custom_conditions.assert_awaited_once_with(
            NetworkConditions.from_dict(wire),
            preset_name=None,
            from_extension=True,
        )

    @pytest.mark.asyncio
    async def test_conditions_changed_report(self, controller):
        """Test conditions reported by the extension are recorded."""
        server = NetworkControlServer(controller)
        wire = NETWORK_PRESETS["Fast 4G"].to_dict()

        await server.handle_message(
            {"type": "networkConditionsChanged", "preset": "Fast 4G", "conditions": wire}
        )

        controller.apply_custom_conditions.assert_awaited_once()
        controller.apply_network_preset.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_without_preset_or_conditions(self, controller):
        """Test a set request needs a preset or conditions."""
        server = NetworkControlServer(controller)
        response = await server.handle_message({"type": "setNetworkConditions"})
        assert response["type"] == "error"

    @pytest.mark.asyncio
    async def test_unknown_message_type(self, controller):
        """Test unknown message types are errors."""
        server = NetworkControlServer(controller)
        response = await server.handle_message({"type": "launchRockets"})
        assert response == {"type": "error", "error": "Unknown message type: launchRockets"}

    @pytest.mark.asyncio
    async def test_non_object_message(self, controller):
        """Test non-object messages are errors."""
        server = NetworkControlServer(controller)
        response = await server.handle_message(["getPresets"])
        assert response["type"] == "error"


class TestConnections:
    """Tests for connection handling."""

    @pytest.mark.asyncio
    async def test_wrong_path_rejected(self, controller):
        """Test connections on another path are closed."""
        server = NetworkControlServer(controller)
        websocket = make_websocket([], path="/other")

        await server._handle_connection(websocket)

        websocket.close.assert_awaited_once_with(code=1008, reason="unknown path")
        websocket.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_connection_flow(self, controller):
        """Test a client gets the current preset on connect and replies to its requests."""
        server = NetworkControlServer(controller)
        websocket = make_websocket([json.dumps({"type": "getNetworkConditions"}), "{broken"])

        await server._handle_connection(websocket)

        sent = [json.loads(call.args[0]) for call in websocket.send.await_args_list]
        assert sent[0] == {"type": "setNetworkConditions", "preset": "Fast 3G"}
        assert sent[1]["type"] == "networkConditions"
        assert sent[2] == {"type": "error", "error": "invalid JSON"}
        assert server.client_count == 0

    @pytest.mark.asyncio
    async def test_notify_preset_broadcasts(self, controller):
        """Test preset changes are broadcast to clients."""
        server = NetworkControlServer(controller)
        first, second = make_websocket([]), make_websocket([])
        server._connections = {first, second}

        await server.notify_preset("Offline")

        expected = json.dumps({"type": "networkConditionsUpdated", "preset": "Offline"})
        first.send.assert_awaited_once_with(expected)
        second.send.assert_awaited_once_with(expected)

    @pytest.mark.asyncio
    async def test_notify_without_clients(self, controller):
        """Test notifying with no clients is a no-op."""
        server = NetworkControlServer(controller)
        await server.notify_preset("Offline")  # Should not raise

"""Network control side channel for the browser extension.

A small WebSocket server lets an out-of-process UI (the network recorder
browser extension) query and change the emulated network conditions of a
running recording. Changes requested here go through the recorder, so they
are applied to every tab and recorded as ``network_conditions_change`` events.

Architecture:
    Browser extension ←→ WebSocket (ws://localhost:9229/debug-agent) ←→ BrowserRecorder

Requests:
    {"type": "getNetworkConditions"}
    {"type": "setNetworkConditions", "preset": "Fast 3G"}
    {"type": "setNetworkConditions", "conditions": {...}}
    {"type": "getPresets"}
"""

import asyncio
import json
from typing import Optional, Protocol

import structlog
from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from .network import NetworkConditions, presets_as_dict

logger = structlog.get_logger()


class NetworkController(Protocol):
    """What the control server needs from the recorder."""

    def network_state(self) -> tuple[NetworkConditions, str]:
        """Current conditions and preset name."""
        ...

    async def apply_network_preset(self, preset_name: str, from_extension: bool = False) -> bool:
        ...

    async def apply_custom_conditions(
        self,
        conditions: NetworkConditions,
        preset_name: Optional[str] = None,
        from_extension: bool = False,
    ) -> None:
        ...


# Older extension builds send these names for setNetworkConditions
SET_ALIASES = {"setNetworkConditions", "applyNetworkConditions", "networkConditionsChanged"}


class NetworkControlServer:
    """WebSocket server bridging the extension and the recorder.

    Usage:
        server = NetworkControlServer(recorder, port=9229)
        await server.start()
        ...
        await server.notify_preset("Fast 3G")
        await server.stop()
    """

    def __init__(
        self,
        controller: NetworkController,
        host: str = "localhost",
        port: int = 9229,
        path: str = "/debug-agent",
    ):
        self.controller = controller
        self.host = host
        self.port = port
        self.path = path
        self._server = None
        self._connections: set = set()
        self.log = logger.bind(component="network_control")

    @property
    def client_count(self) -> int:
        return len(self._connections)

    async def start(self) -> None:
        """Start listening for extension connections."""
        self._server = await serve(self._handle_connection, self.host, self.port)
        self.log.info(
            "Network control server started",
            url=f"ws://{self.host}:{self.port}{self.path}",
        )

    async def stop(self) -> None:
        """Close client connections and stop the server."""
        for connection in list(self._connections):
            try:
                await connection.close()
            except Exception as e:
                self.log.debug("Error closing extension connection", error=str(e))
        self._connections.clear()
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            self.log.info("Network control server stopped")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Serve one extension connection."""
        request = getattr(websocket, "request", None)
        if request is not None and self.path and request.path != self.path:
            await websocket.close(code=1008, reason="unknown path")
            return

        self._connections.add(websocket)
        self.log.info("Extension connected", remote=websocket.remote_address)

        try:
            _, preset = self.controller.network_state()
            await websocket.send(json.dumps({"type": "setNetworkConditions", "preset": preset}))

            async for message in websocket:
                try:
                    request_data = json.loads(message)
                except (TypeError, ValueError) as e:
                    self.log.warning("Malformed control message", error=str(e))
                    await websocket.send(json.dumps({"type": "error", "error": "invalid JSON"}))
                    continue
                response = await self.handle_message(request_data)
                await websocket.send(json.dumps(response))
        except ConnectionClosed:
            pass
        finally:
            self._connections.discard(websocket)
            self.log.info("Extension disconnected")

    async def handle_message(self, message: dict) -> dict:
        """Handle one control request and build its response."""
        if not isinstance(message, dict):
            return {"type": "error", "error": "message must be an object"}

        msg_type = message.get("type")

        if msg_type == "getNetworkConditions":
            return self._state_response()

        if msg_type == "getPresets":
            return {"type": "presets", "presets": presets_as_dict()}

        if msg_type in SET_ALIASES:
            preset = message.get("preset")
            conditions = message.get("conditions")

            # networkConditionsChanged reports conditions the extension already applied
            if isinstance(conditions, dict) and (
                msg_type == "networkConditionsChanged" or not isinstance(preset, str)
            ):
                await self.controller.apply_custom_conditions(
                    NetworkConditions.from_dict(conditions),
                    preset_name=preset if isinstance(preset, str) else None,
                    from_extension=True,
                )
            elif isinstance(preset, str):
                applied = await self.controller.apply_network_preset(preset, from_extension=True)
                if not applied:
                    return {"type": "error", "error": f"Unknown network preset: {preset}"}
            else:
                return {"type": "error", "error": "preset or conditions required"}

            return self._state_response()

        self.log.warning("Unknown control message", type=msg_type)
        return {"type": "error", "error": f"Unknown message type: {msg_type}"}

    def _state_response(self) -> dict:
        conditions, preset = self.controller.network_state()
        return {
            "type": "networkConditions",
            "conditions": conditions.to_dict(),
            "preset": preset,
        }

    async def notify_preset(self, preset: str) -> None:
        """Tell connected extensions that the recorder changed the conditions."""
        if not self._connections:
            return
        data = json.dumps({"type": "networkConditionsUpdated", "preset": preset})
        await asyncio.gather(
            *[connection.send(data) for connection in self._connections],
            return_exceptions=True,
        )

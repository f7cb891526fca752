"""
Bridge Context

Owns every control-side component for the lifetime of the process and wires
them together: the peer server feeds the router, the router feeds the mirror,
buffer and coordinator, and a dropped connection fails the in-flight command.
"""

import logging
from typing import Optional

from aiohttp import web

from bridge.config import BridgeSettings
from bridge.errors import TransportError
from bridge.modules.command_coordinator import CommandCoordinator
from bridge.modules.http_api import setup_routes
from bridge.modules.log_buffer import RingLogBuffer
from bridge.modules.message_router import MessageRouter
from bridge.modules.peer_server import PeerServer
from bridge.modules.query_facade import QueryFacade
from bridge.modules.state_mirror import StateMirror

logger = logging.getLogger(__name__)


class BridgeContext:
    def __init__(self, settings: Optional[BridgeSettings] = None):
        self.settings = settings or BridgeSettings()
        self.log_buffer = RingLogBuffer(capacity=self.settings.log_capacity)
        self.state_mirror = StateMirror()
        self.peer_server = PeerServer(on_frame=self._route_frame)
        self.coordinator = CommandCoordinator(
            log_buffer=self.log_buffer,
            send_frame=self.peer_server.send,
            is_connected=self.peer_server.is_connected,
            timeout_seconds=self.settings.command_timeout_seconds,
            diagnostic_tag=self.settings.diagnostic_tag,
        )
        self.router = MessageRouter(
            state_mirror=self.state_mirror,
            log_buffer=self.log_buffer,
            coordinator=self.coordinator,
            reserved_asset_prefix=self.settings.reserved_asset_prefix,
        )
        self.facade = QueryFacade(
            state_mirror=self.state_mirror,
            log_buffer=self.log_buffer,
            coordinator=self.coordinator,
            is_connected=self.peer_server.is_connected,
        )
        self.peer_server.add_disconnect_callback(self._on_peer_disconnect)

    def _route_frame(self, raw_frame) -> None:
        self.router.route(raw_frame)

    def _on_peer_disconnect(self, sid: str) -> None:
        if self.coordinator.fail_pending(TransportError("Editor connection dropped while a command was in flight")):
            logger.info(f"In-flight command failed because session {sid} went away")

    def create_app(self) -> web.Application:
        """Builds the aiohttp application serving the editor endpoint and the query routes."""
        app = web.Application()
        self.peer_server.attach(app)
        setup_routes(app, self)
        return app

    async def shutdown(self) -> None:
        self.coordinator.fail_pending(TransportError("Bridge is shutting down"))
        await self.peer_server.shutdown()

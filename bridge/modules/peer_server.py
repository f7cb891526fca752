"""
Peer Server

The control side of the bridge transport: a Socket.IO server attached to the
aiohttp application that the editor connects to. Exactly one editor session is
live at a time; a newer session replaces the older one.
"""

import asyncio
import logging
import time
from typing import Dict, Any, Callable, List, Optional

import socketio
from aiohttp import web

from bridge.errors import NotConnectedError, TransportError
from bridge.protocol import BRIDGE_EVENT, ConnectionState

logger = logging.getLogger(__name__)

EMIT_TIMEOUT_SECONDS = 5

FrameHandler = Callable[[Any], Any]
DisconnectCallback = Callable[[str], None]


class PeerServer:
    """
    Tracks the editor session and moves frames in both directions.

    Inbound frames are passed to ``on_frame`` (the message router). Disconnect
    callbacks run whenever the live session goes away, which is how an in-flight
    command learns that its connection dropped.
    """

    def __init__(self, on_frame: FrameHandler):
        self.sio = socketio.AsyncServer(async_mode='aiohttp', cors_allowed_origins='*', logger=False)
        self._on_frame = on_frame
        self._disconnect_callbacks: List[DisconnectCallback] = []
        self.state = ConnectionState.DISCONNECTED
        self.peer_sid: Optional[str] = None
        self.peer_info: Dict[str, Any] = {}
        self.frames_received = 0
        self._register_handlers()

    def attach(self, app: web.Application) -> None:
        self.sio.attach(app)

    def add_disconnect_callback(self, callback: DisconnectCallback) -> None:
        self._disconnect_callbacks.append(callback)

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self.peer_sid is not None

    def _register_handlers(self):
        sio = self.sio

        @sio.event
        async def connect(sid, environ, auth=None):
            previous = self.peer_sid
            self.peer_sid = sid
            self.peer_info = {
                "remote_addr": environ.get('REMOTE_ADDR', 'Unknown') if isinstance(environ, dict) else 'Unknown',
                "connected_at": time.time(),
            }
            self.state = ConnectionState.CONNECTED
            logger.info(f"Editor connected: sid={sid}, ip={self.peer_info['remote_addr']}")
            if previous is not None and previous != sid:
                logger.warning(f"Replacing previous editor session {previous} with {sid}")
                self._notify_disconnect(previous)
                asyncio.create_task(self._drop_session(previous))

        @sio.event
        async def disconnect(sid, reason=None):
            if sid != self.peer_sid:
                logger.debug(f"Ignoring disconnect of superseded session {sid}")
                return
            logger.info(f"Editor disconnected: sid={sid}, reason={reason}")
            self.peer_sid = None
            self.peer_info = {}
            self.state = ConnectionState.DISCONNECTED
            self._notify_disconnect(sid)

        @sio.on(BRIDGE_EVENT)
        async def bridge_frame(sid, raw_frame):
            if sid != self.peer_sid:
                logger.warning(f"Ignoring frame from superseded session {sid}")
                return
            self.frames_received += 1
            self._on_frame(raw_frame)

    def _notify_disconnect(self, sid: str) -> None:
        for callback in self._disconnect_callbacks:
            try:
                callback(sid)
            except Exception as e:
                logger.error(f"Error in disconnect callback for session {sid}: {e}", exc_info=True)

    async def _drop_session(self, sid: str) -> None:
        try:
            await self.sio.disconnect(sid)
        except Exception as e:
            logger.warning(f"Failed to disconnect superseded session {sid}: {e}")

    async def send(self, frame: Dict[str, Any]) -> None:
        """
        Sends one frame to the live editor session.

        Raises:
            NotConnectedError: No editor is connected
            TransportError: The emit failed or timed out
        """
        sid = self.peer_sid
        if sid is None:
            raise NotConnectedError()
        try:
            await asyncio.wait_for(self.sio.emit(BRIDGE_EVENT, frame, to=sid), timeout=EMIT_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Timed out sending '{frame.get('type')}' frame to editor") from e
        except Exception as e:
            logger.error(f"Failed to send '{frame.get('type')}' frame to editor {sid}: {e}", exc_info=True)
            raise TransportError(f"Failed to send frame to editor: {e}") from e

    async def shutdown(self) -> None:
        sid = self.peer_sid
        if sid is not None:
            logger.info(f"Disconnecting editor session {sid}...")
            await self._drop_session(sid)

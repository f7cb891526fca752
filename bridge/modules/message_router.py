"""
Message Router

Decodes inbound editor frames and dispatches them by their type discriminant to
the State Mirror, the Ring Log Buffer or the Command Coordinator. Routing never
raises: a malformed or unknown frame is logged and dropped so the receive path
keeps the connection alive.
"""

import logging
from typing import Any, Callable, Dict

from bridge.errors import ProtocolError
from bridge.modules.command_coordinator import CommandCoordinator
from bridge.modules.log_buffer import RingLogBuffer
from bridge.modules.state_mirror import StateMirror
from bridge.observability import get_tracer
from bridge.protocol import (
    COMMAND_RESULT,
    LOG_EVENT,
    SNAPSHOT_UPDATE,
    LogEvent,
    Snapshot,
    decode_frame,
)

tracer = get_tracer(__name__)

logger = logging.getLogger(__name__)

DEFAULT_RESERVED_ASSET_PREFIX = "Packages/"


class MessageRouter:
    """
    Sole writer of the State Mirror and the Ring Log Buffer contents.
    """

    def __init__(self,
                 state_mirror: StateMirror,
                 log_buffer: RingLogBuffer,
                 coordinator: CommandCoordinator,
                 reserved_asset_prefix: str = DEFAULT_RESERVED_ASSET_PREFIX):
        self.state_mirror = state_mirror
        self.log_buffer = log_buffer
        self.coordinator = coordinator
        self.reserved_asset_prefix = reserved_asset_prefix
        self.dropped_frames = 0
        self._handlers: Dict[str, Callable[[Any], bool]] = {
            SNAPSHOT_UPDATE: self._handle_snapshot_update,
            LOG_EVENT: self._handle_log_event,
            COMMAND_RESULT: self._handle_command_result,
        }

    def route(self, raw_frame: Any) -> bool:
        """
        Dispatches a single inbound frame.

        Args:
            raw_frame: Frame as delivered by the transport (dict or JSON text)

        Returns:
            True if the frame was applied, False if it was dropped
        """
        with tracer.start_as_current_span("bridge.route_frame") as span:
            try:
                frame_type, data = decode_frame(raw_frame)
                span.set_attribute("bridge.frame_type", frame_type)
                handler = self._handlers.get(frame_type)
                if handler is None:
                    self.dropped_frames += 1
                    logger.warning(f"Dropping frame with unrecognized type '{frame_type}'")
                    return False
                return handler(data)
            except ProtocolError as e:
                self.dropped_frames += 1
                logger.warning(f"Dropping malformed frame: {e.message}")
                span.add_event("malformed_frame", {"reason": e.message})
                return False
            except Exception as e:
                self.dropped_frames += 1
                logger.error(f"Unexpected error routing frame: {e}", exc_info=True)
                span.record_exception(e)
                return False

    def _handle_snapshot_update(self, data: Any) -> bool:
        snapshot = Snapshot.from_dict(data).without_asset_prefix(self.reserved_asset_prefix)
        self.state_mirror.publish(snapshot)
        return True

    def _handle_log_event(self, data: Any) -> bool:
        self.log_buffer.insert(LogEvent.from_dict(data))
        return True

    def _handle_command_result(self, data: Any) -> bool:
        if not isinstance(data, dict):
            raise ProtocolError(f"commandResult payload must be an object, got {type(data).__name__}")
        return self.coordinator.resolve(data)

"""
Editor Connection Manager

Owns the editor's single connection to the control process.

Responsibilities:
- Connects with a bounded timeout and never starts a second attempt while one
  is in progress or established
- Polls for reconnection while disconnected, and supports a manual retry
- Publishes the local state snapshot and forwards buffered log records at a
  fixed interval while connected
- Executes inbound executeCommand frames one at a time and replies with a
  commandResult
"""

import asyncio
import logging
from typing import Dict, Any, Optional, Set

import socketio
from opentelemetry import trace, propagate

from bridge.config import EditorSettings
from bridge.editor.code_executor import PythonCodeExecutor
from bridge.editor.log_forwarder import LogForwarder
from bridge.errors import ProtocolError
from bridge.modules.state_mirror import StateMirror
from bridge.observability import get_tracer
from bridge.protocol import (
    BRIDGE_EVENT,
    COMMAND_RESULT,
    EXECUTE_COMMAND,
    LOG_EVENT,
    SNAPSHOT_UPDATE,
    ConnectionState,
    decode_frame,
    make_frame,
)

tracer = get_tracer(__name__)

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Connection lifecycle for the editor side of the bridge. The only writer of
    ``state``.

    Args:
        settings: Editor bridge configuration
        state_mirror: Local editor state; whatever was last published to it is
            what gets sent each interval
        executor: Runs code fragments from executeCommand frames
        log_forwarder: Handler whose queued records are forwarded as logEvents
    """

    def __init__(self,
                 settings: EditorSettings,
                 state_mirror: StateMirror,
                 executor: Optional[PythonCodeExecutor] = None,
                 log_forwarder: Optional[LogForwarder] = None):
        self.settings = settings
        self.state_mirror = state_mirror
        self.executor = executor or PythonCodeExecutor(diagnostic_tag=settings.diagnostic_tag)
        self.log_forwarder = log_forwarder
        self.state = ConnectionState.DISCONNECTED
        self.last_error: Optional[str] = None
        self.client: Optional[socketio.AsyncClient] = None
        self._publish_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._command_tasks: Set[asyncio.Task] = set()
        self._execution_lock = asyncio.Lock()
        # Serializes queue draining so a command reply waits for a tick that is still sending its logs
        self._flush_lock = asyncio.Lock()
        # Bumped by stop() so an attempt that was in flight does not resurrect the connection
        self._generation = 0

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def logging_enabled(self) -> bool:
        return self.log_forwarder is not None and self.log_forwarder.enabled

    @logging_enabled.setter
    def logging_enabled(self, enabled: bool) -> None:
        if self.log_forwarder is None:
            logger.warning("No log forwarder installed; logging toggle ignored")
            return
        self.log_forwarder.enabled = enabled
        logger.info(f"Editor log forwarding {'enabled' if enabled else 'disabled'}")

    # --- Lifecycle ---

    async def start(self) -> bool:
        """Starts the reconnect poll and makes the first connection attempt."""
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())
        return await self.connect()

    async def connect(self) -> bool:
        """
        Attempts a connection unless one is already in progress or established.

        Returns:
            True if connected when the call returns
        """
        if self.state is not ConnectionState.DISCONNECTED:
            logger.debug(f"Connect requested while {self.state.value}; ignoring")
            return self.state is ConnectionState.CONNECTED

        # No await between the guard and this transition
        self.state = ConnectionState.CONNECTING
        generation = self._generation
        url = self.settings.server_url
        timeout = self.settings.connect_timeout_seconds
        client = socketio.AsyncClient(reconnection=False, logger=False)
        self._register_handlers(client)
        auth = {"token": self.settings.auth_token} if self.settings.auth_token else None

        with tracer.start_as_current_span("editor.connect", attributes={"editor.server_url": url}) as span:
            logger.info(f"Connecting to bridge server at {url}...")
            try:
                await asyncio.wait_for(client.connect(url, auth=auth, namespaces=["/"]), timeout=timeout)
            except asyncio.TimeoutError:
                self._connect_failed(f"Connection attempt timed out after {timeout:g}s", span, generation)
                await self._discard_client(client)
                return False
            except socketio.exceptions.ConnectionError as e:
                self._connect_failed(f"Failed to connect to {url}: {e}", span, generation)
                await self._discard_client(client)
                return False
            except asyncio.CancelledError:
                self._connect_failed("Connection attempt cancelled", span, generation)
                await self._discard_client(client)
                raise
            except Exception as e:
                logger.error(f"Unexpected error connecting to {url}: {e}", exc_info=True)
                self._connect_failed(f"Unexpected error connecting to {url}: {e}", span, generation)
                await self._discard_client(client)
                return False

            if generation != self._generation:
                logger.info("Connection manager stopped during connect; discarding new session")
                await self._discard_client(client)
                return False

            self.client = client
            self.state = ConnectionState.CONNECTED
            self.last_error = None
            span.set_attribute("editor.connected", True)

        logger.info(f"Connected to bridge server at {url}")
        self._publish_task = asyncio.create_task(self._publish_loop())
        return True

    async def retry(self) -> bool:
        """Manual reconnect; equivalent to the poll timer firing now."""
        logger.info("Manual connection retry requested")
        return await self.connect()

    async def stop(self) -> None:
        logger.info("Stopping editor connection manager...")
        self._generation += 1
        self._cancel_task(self._reconnect_task)
        self._reconnect_task = None
        client = self.client
        self._mark_disconnected("Connection manager stopped")
        if client is not None:
            await self._discard_client(client)
        logger.info("Editor connection manager stopped.")

    def _connect_failed(self, reason: str, span, generation: int) -> None:
        logger.warning(reason)
        span.set_status(trace.Status(trace.StatusCode.ERROR, reason))
        if generation != self._generation:
            return
        self.last_error = reason
        self.state = ConnectionState.DISCONNECTED

    def _mark_disconnected(self, reason: str) -> None:
        was_connected = self.state is ConnectionState.CONNECTED
        self.state = ConnectionState.DISCONNECTED
        self.client = None
        self._cancel_task(self._publish_task)
        self._publish_task = None
        for task in list(self._command_tasks):
            self._cancel_task(task)
        if was_connected:
            self.last_error = reason
            logger.warning(f"Disconnected from bridge server: {reason}")

    @staticmethod
    def _cancel_task(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # A loop tearing itself down exits on its own state check
        if task is not current:
            task.cancel()

    async def _discard_client(self, client: socketio.AsyncClient) -> None:
        try:
            await client.disconnect()
        except Exception as e:
            logger.debug(f"Ignoring error while discarding client: {e}")

    # --- Handlers ---

    def _register_handlers(self, client: socketio.AsyncClient) -> None:
        @client.event
        async def connect():
            logger.debug("Socket.IO session established")

        @client.event
        async def disconnect(reason=None):
            if client is not self.client:
                return
            self._mark_disconnected(f"Connection closed ({reason})" if reason else "Connection closed")

        @client.on(BRIDGE_EVENT)
        async def bridge_frame(raw_frame):
            await self._handle_frame(raw_frame)

    async def _handle_frame(self, raw_frame: Any) -> None:
        try:
            frame_type, data = decode_frame(raw_frame)
            if frame_type != EXECUTE_COMMAND:
                logger.warning(f"Dropping frame with unexpected type '{frame_type}'")
                return
            if not isinstance(data, dict) or not isinstance(data.get("code"), str):
                raise ProtocolError("executeCommand payload must be an object with a string 'code'")
        except ProtocolError as e:
            logger.warning(f"Dropping malformed frame: {e.message}")
            return
        except Exception as e:
            logger.error(f"Unexpected error handling inbound frame: {e}", exc_info=True)
            return

        task = asyncio.create_task(self._run_command(data))
        self._command_tasks.add(task)
        task.add_done_callback(self._command_tasks.discard)

    async def _run_command(self, data: Dict[str, Any]) -> None:
        command_id = data.get("commandId")
        parent_context = propagate.extract(data.get("traceContext") or {})
        with tracer.start_as_current_span("editor.execute_command", context=parent_context,
                                          attributes={"bridge.command_id": str(command_id)}):
            async with self._execution_lock:
                logger.info(f"Executing command {command_id}")
                loop = asyncio.get_running_loop()
                try:
                    outcome = await loop.run_in_executor(None, self.executor.execute, data["code"])
                except Exception as e:
                    logger.error(f"Executor failed for command {command_id}: {e}", exc_info=True)
                    outcome = {
                        "result": None,
                        "logs": [],
                        "errors": [f"{type(e).__name__}: {e}"],
                        "warnings": [],
                        "executionSuccess": False,
                        "errorDetails": {"message": str(e), "stackTrace": "", "type": type(e).__name__},
                    }
            if command_id is not None:
                outcome["commandId"] = command_id
            # Logs go first so the control side sees them before the result
            await self.flush_logs()
            if not await self.send_frame(make_frame(COMMAND_RESULT, outcome)):
                logger.warning(f"Could not deliver result of command {command_id}")

    # --- Outbound ---

    async def send_frame(self, frame: Dict[str, Any]) -> bool:
        client = self.client
        if client is None or self.state is not ConnectionState.CONNECTED:
            return False
        try:
            await client.emit(BRIDGE_EVENT, frame)
            return True
        except Exception as e:
            logger.error(f"Failed to send '{frame.get('type')}' frame: {e}")
            self._mark_disconnected(f"Send failed: {e}")
            asyncio.create_task(self._discard_client(client))
            return False

    async def publish_snapshot(self) -> bool:
        return await self.send_frame(make_frame(SNAPSHOT_UPDATE, self.state_mirror.read().to_dict()))

    async def flush_logs(self) -> int:
        """
        Sends every queued log record. Returns how many were sent.

        Records that could not be sent are put back on the forwarder queue.
        """
        if self.log_forwarder is None:
            return 0
        async with self._flush_lock:
            events = self.log_forwarder.drain()
            sent = 0
            try:
                for event in events:
                    if not await self.send_frame(make_frame(LOG_EVENT, event.to_dict())):
                        break
                    sent += 1
            finally:
                if sent < len(events):
                    # Unsent records go back to the front of the queue for the next connection
                    self.log_forwarder.requeue(events[sent:])
        return sent

    # --- Background loops ---

    async def _publish_loop(self) -> None:
        interval = self.settings.snapshot_interval_seconds
        logger.debug(f"Starting snapshot publication every {interval}s")
        try:
            while self.state is ConnectionState.CONNECTED:
                await self.flush_logs()
                await self.publish_snapshot()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.debug("Snapshot publication task cancelled")

    async def _reconnect_loop(self) -> None:
        interval = self.settings.reconnect_interval_seconds
        try:
            while True:
                await asyncio.sleep(interval)
                if self.state is ConnectionState.DISCONNECTED:
                    logger.info("Attempting to reconnect to bridge server...")
                    try:
                        await self.connect()
                    except Exception as e:
                        logger.error(f"Error during reconnect attempt: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.debug("Reconnect task cancelled")

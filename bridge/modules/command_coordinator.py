"""
Command Coordinator

Correlates the single in-flight remote execution with its result.

Responsibilities:
- Guards the one-slot PendingCommand (a second execute is rejected, never queued)
- Dispatches executeCommand frames through the peer transport
- Races the inbound commandResult against the command timeout
- Fails the pending command exactly once when the transport drops
- Collects the tagged log lines the editor emitted while the command ran
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Any, Awaitable, Callable, List, Optional

from opentelemetry import trace, propagate

from bridge.errors import (
    AlreadyInFlightError,
    CommandError,
    CommandTimeoutError,
    NotConnectedError,
    RemoteCompilationError,
    RemoteRuntimeError,
    TransportError,
)
from bridge.modules.log_buffer import RingLogBuffer, filter_tagged
from bridge.observability import get_tracer
from bridge.protocol import COMPILATION_ERROR_TYPE, EXECUTE_COMMAND, make_frame

tracer = get_tracer(__name__)

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT_SECONDS = 5.0
DEFAULT_DIAGNOSTIC_TAG = "[EditorBridge]"

SendFrame = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass
class PendingCommand:
    command_id: str
    code: str
    issued_at: float
    log_mark: int
    future: "asyncio.Future[Dict[str, Any]]"


@dataclass
class ExecutionOutcome:
    """Successful result of a remote command."""
    result: Any
    logs: List[str] = field(default_factory=list)
    output: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    elapsed_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result,
            "logs": self.logs,
            "output": self.output,
            "warnings": self.warnings,
            "executionTime": f"{int(round(self.elapsed_ms))}ms",
            "status": "success",
        }


class CommandCoordinator:
    """
    Owns the PendingCommand slot. Only this class mutates it.

    Args:
        log_buffer: Buffer the inbound log events land in, used to capture the
            command's tagged log lines
        send_frame: Coroutine that transmits a frame to the editor; expected to
            raise NotConnectedError or TransportError on failure
        is_connected: Returns whether a live editor connection exists
        timeout_seconds: How long to wait for a commandResult
        diagnostic_tag: Prefix identifying log lines that belong to commands
    """

    def __init__(self,
                 log_buffer: RingLogBuffer,
                 send_frame: SendFrame,
                 is_connected: Callable[[], bool],
                 timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
                 diagnostic_tag: str = DEFAULT_DIAGNOSTIC_TAG):
        self._log_buffer = log_buffer
        self._send_frame = send_frame
        self._is_connected = is_connected
        self.timeout_seconds = timeout_seconds
        self.diagnostic_tag = diagnostic_tag
        self._pending: Optional[PendingCommand] = None
        self.discarded_results = 0

    @property
    def pending(self) -> Optional[PendingCommand]:
        return self._pending

    @property
    def busy(self) -> bool:
        return self._pending is not None

    async def execute(self, code: str) -> ExecutionOutcome:
        """
        Runs ``code`` on the editor and waits for its result.

        Raises:
            NotConnectedError: No editor connection exists; nothing is sent
            AlreadyInFlightError: Another command occupies the slot
            CommandTimeoutError: No result arrived within the timeout
            TransportError: The connection dropped or the send failed
            RemoteCompilationError: The editor could not compile the fragment
            RemoteRuntimeError: The fragment raised while executing
        """
        if not self._is_connected():
            raise NotConnectedError()
        if self._pending is not None:
            logger.warning(f"Rejecting command: command {self._pending.command_id} is still in flight")
            raise AlreadyInFlightError()

        loop = asyncio.get_running_loop()
        pending = PendingCommand(
            command_id=uuid.uuid4().hex,
            code=code,
            issued_at=time.monotonic(),
            log_mark=self._log_buffer.next_sequence,
            future=loop.create_future(),
        )
        # No await between the busy check and this assignment
        self._pending = pending

        with tracer.start_as_current_span("bridge.execute_command", attributes={
            "bridge.command_id": pending.command_id,
            "bridge.code_length": len(code),
        }) as span:
            try:
                payload = {"commandId": pending.command_id, "code": code}
                carrier: Dict[str, str] = {}
                propagate.inject(carrier)
                if carrier:
                    payload["traceContext"] = carrier

                logger.info(f"Dispatching command {pending.command_id} ({len(code)} chars)")
                try:
                    await self._send_frame(make_frame(EXECUTE_COMMAND, payload))
                except CommandError:
                    raise
                except Exception as e:
                    raise TransportError(f"Failed to send command to editor: {e}") from e

                try:
                    result_payload = await asyncio.wait_for(pending.future, timeout=self.timeout_seconds)
                except asyncio.TimeoutError:
                    logger.warning(f"Command {pending.command_id} timed out after {self.timeout_seconds}s")
                    span.add_event("command_timeout")
                    raise CommandTimeoutError(self.timeout_seconds) from None

                elapsed_ms = (time.monotonic() - pending.issued_at) * 1000
                span.set_attribute("bridge.elapsed_ms", elapsed_ms)
                return self._build_outcome(pending, result_payload, elapsed_ms)
            except CommandError as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, e.code))
                raise
            finally:
                if not pending.future.done():
                    pending.future.cancel()
                elif not pending.future.cancelled():
                    # Marks a disconnect error as retrieved if the send already failed
                    pending.future.exception()
                if self._pending is pending:
                    self._pending = None

    def resolve(self, payload: Any) -> bool:
        """
        Completes the pending command with an inbound commandResult payload.

        Results with no pending command, or with a commandId that does not match
        the pending one, are stale and dropped.

        Returns:
            True if the pending command was resolved
        """
        pending = self._pending
        if pending is None or pending.future.done():
            self.discarded_results += 1
            logger.debug("Discarding commandResult: no command is pending")
            return False
        command_id = payload.get("commandId") if isinstance(payload, dict) else None
        if command_id is not None and command_id != pending.command_id:
            self.discarded_results += 1
            logger.info(f"Discarding stale commandResult for {command_id} (pending: {pending.command_id})")
            return False
        pending.future.set_result(payload if isinstance(payload, dict) else {"result": payload})
        return True

    def fail_pending(self, error: CommandError) -> bool:
        """
        Resolves the pending command with ``error``. Safe to call repeatedly;
        only the first call has an effect.

        Returns:
            True if a pending command was failed
        """
        pending = self._pending
        if pending is None or pending.future.done():
            return False
        logger.warning(f"Failing in-flight command {pending.command_id}: {error.message}")
        pending.future.set_exception(error)
        return True

    def _build_outcome(self, pending: PendingCommand, payload: Dict[str, Any], elapsed_ms: float) -> ExecutionOutcome:
        captured = filter_tagged(self._log_buffer.entries_since(pending.log_mark), self.diagnostic_tag)
        remote_logs = _string_list(payload.get("logs"))

        if payload.get("executionSuccess", True) is False:
            details = payload.get("errorDetails")
            if not isinstance(details, dict):
                details = {}
            errors = _string_list(payload.get("errors"))
            message = str(details.get("message") or "") or (errors[0] if errors else "Command failed on the editor")
            error_type = details.get("type")
            error_type = str(error_type) if error_type is not None else None
            error_cls = RemoteCompilationError if error_type == COMPILATION_ERROR_TYPE else RemoteRuntimeError
            logger.info(f"Command {pending.command_id} failed remotely ({error_type}): {message}")
            raise error_cls(
                message,
                error_type=error_type,
                stack_trace=str(details.get("stackTrace") or ""),
                logs=captured + remote_logs,
            )

        logger.info(f"Command {pending.command_id} completed in {elapsed_ms:.0f}ms")
        return ExecutionOutcome(
            result=payload.get("result"),
            logs=captured,
            output=remote_logs,
            warnings=_string_list(payload.get("warnings")),
            elapsed_ms=elapsed_ms,
        )


def _string_list(value: Any) -> List[str]:
    """Line list from a commandResult field; anything but a list or tuple counts as empty."""
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value]

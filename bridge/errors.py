"""
Bridge Error Taxonomy

Typed failures surfaced by the bridge. Command and validation errors always
reach the caller of the query façade; transport and protocol faults are handled
internally and only show up as NotConnectedError on the next call.
"""

from typing import Dict, Any, List, Optional


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""

    code = "bridge_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class InvalidRequestError(BridgeError):
    """Caller-supplied arguments failed validation."""

    code = "invalid_request"


class ProtocolError(BridgeError):
    """An inbound frame could not be decoded."""

    code = "protocol_error"


class CommandError(BridgeError):
    """Base class for failures of a remote command execution."""

    code = "command_error"


class NotConnectedError(CommandError):
    code = "not_connected"

    def __init__(self, message: str = "Editor is not connected. Make sure the editor is running and the bridge plugin is enabled."):
        super().__init__(message)


class AlreadyInFlightError(CommandError):
    code = "already_in_flight"

    def __init__(self, message: str = "Another command is still executing. Wait for it to finish before sending the next one."):
        super().__init__(message)


class CommandTimeoutError(CommandError):
    code = "timeout"

    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Command execution timed out after {timeout_seconds:g} seconds. "
            f"The fragment may be too long-running or the editor is busy."
        )
        self.timeout_seconds = timeout_seconds


class TransportError(CommandError):
    """The connection dropped or a send failed while a command was in flight."""

    code = "transport_error"


class RemoteExecutionError(CommandError):
    """The editor ran the command and reported an application-level failure."""

    code = "remote_error"

    def __init__(self,
                 message: str,
                 error_type: Optional[str] = None,
                 stack_trace: str = "",
                 logs: Optional[List[str]] = None):
        super().__init__(message)
        self.error_type = error_type
        self.stack_trace = stack_trace
        self.logs = list(logs or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "errorType": self.error_type,
            "stackTrace": self.stack_trace,
            "logs": self.logs,
        })
        return data


class RemoteCompilationError(RemoteExecutionError):
    code = "compilation_error"


class RemoteRuntimeError(RemoteExecutionError):
    code = "runtime_error"

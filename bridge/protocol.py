"""
Bridge Wire Protocol

Every frame exchanged between the editor and the control process is a single
JSON object of the form ``{"type": <discriminant>, "data": <payload>}`` carried
on one Socket.IO event. This module owns the discriminants, the shared data
model (snapshots and log events) and the conversions to and from wire form.
"""

import json
import time
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Dict, Any, List, Mapping, Optional, Tuple, Union

from bridge.errors import ProtocolError

logger = logging.getLogger(__name__)

# Socket.IO event carrying every bridge frame
BRIDGE_EVENT = "bridge_frame"

# Discriminants
SNAPSHOT_UPDATE = "snapshotUpdate"
LOG_EVENT = "logEvent"
EXECUTE_COMMAND = "executeCommand"
COMMAND_RESULT = "commandResult"

KNOWN_FRAME_TYPES = frozenset({SNAPSHOT_UPDATE, LOG_EVENT, EXECUTE_COMMAND, COMMAND_RESULT})

COMPILATION_ERROR_TYPE = "CompilationError"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Severity(Enum):
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"
    FATAL = "Fatal"

    @classmethod
    def parse(cls, value: Union[str, "Severity"]) -> "Severity":
        """Accepts canonical names plus the editor's historical log type names."""
        if isinstance(value, Severity):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Severity must be a string, got {type(value).__name__}")
        key = value.strip().lower()
        if key in _SEVERITY_ALIASES:
            return _SEVERITY_ALIASES[key]
        raise ValueError(f"Unknown severity '{value}'")


_SEVERITY_ALIASES = {
    "info": Severity.INFO,
    "log": Severity.INFO,
    "warning": Severity.WARNING,
    "error": Severity.ERROR,
    "assert": Severity.ERROR,
    "fatal": Severity.FATAL,
    "exception": Severity.FATAL,
}


class RunMode(Enum):
    STOPPED = "Stopped"
    RUNNING = "Running"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RunMode":
        if value in ("Running", "Playing"):
            return cls.RUNNING
        return cls.STOPPED


def parse_timestamp(value: Union[str, datetime, None]) -> datetime:
    """
    Parses an ISO-8601 timestamp into an aware datetime.

    Naive values are taken to be UTC so that comparisons against filter bounds
    never mix naive and aware datetimes.
    """
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# --- Log events ---

LOG_FIELDS = ("message", "stackTrace", "severity", "timestamp")


@dataclass(frozen=True)
class LogEvent:
    """A single telemetry line forwarded by the editor."""
    message: str
    stack_trace: str = ""
    severity: Severity = Severity.INFO
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    received_monotonic: float = field(default_factory=time.monotonic, compare=False)

    def to_dict(self, fields: Optional[Any] = None) -> Dict[str, Any]:
        data = {
            "message": self.message,
            "stackTrace": self.stack_trace,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if fields is None:
            return data
        return {name: value for name, value in data.items() if name in fields}

    @classmethod
    def from_dict(cls, data: Any) -> "LogEvent":
        if not isinstance(data, dict):
            raise ProtocolError(f"logEvent payload must be an object, got {type(data).__name__}")
        message = data.get("message")
        if not isinstance(message, str):
            raise ProtocolError("logEvent payload is missing a string 'message'")
        try:
            severity = Severity.parse(data.get("severity", data.get("logType", "Info")))
            timestamp = parse_timestamp(data.get("timestamp"))
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Invalid logEvent payload: {e}") from e
        return cls(
            message=message,
            stack_trace=str(data.get("stackTrace") or ""),
            severity=severity,
            timestamp=timestamp,
        )


# --- Snapshots ---

@dataclass(frozen=True)
class SceneNode:
    name: str
    components: Tuple[str, ...] = ()
    children: Tuple["SceneNode", ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "components": list(self.components),
            "children": [child.to_dict() for child in self.children],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "SceneNode":
        if not isinstance(data, dict) or not isinstance(data.get("name"), str):
            raise ProtocolError("Scene node must be an object with a string 'name'")
        return cls(
            name=data["name"],
            components=tuple(str(c) for c in data.get("components") or ()),
            children=tuple(cls.from_dict(child) for child in data.get("children") or ()),
        )


@dataclass(frozen=True)
class Snapshot:
    """Complete, replace-only view of editor state at one point in time."""
    active_objects: Tuple[str, ...] = ()
    selected_objects: Tuple[str, ...] = ()
    run_mode: RunMode = RunMode.STOPPED
    scene_tree: Tuple[SceneNode, ...] = ()
    assets: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self):
        # Freeze whatever mapping the caller handed in
        frozen = MappingProxyType({name: tuple(paths) for name, paths in dict(self.assets).items()})
        object.__setattr__(self, "assets", frozen)

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls()

    def without_asset_prefix(self, prefix: str) -> "Snapshot":
        """Returns a copy with every asset path under ``prefix`` removed."""
        if not prefix:
            return self
        filtered = {
            category: tuple(path for path in paths if not path.startswith(prefix))
            for category, paths in self.assets.items()
        }
        return Snapshot(
            active_objects=self.active_objects,
            selected_objects=self.selected_objects,
            run_mode=self.run_mode,
            scene_tree=self.scene_tree,
            assets=filtered,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activeObjects": list(self.active_objects),
            "selectedObjects": list(self.selected_objects),
            "runMode": self.run_mode.value,
            "sceneTree": [node.to_dict() for node in self.scene_tree],
            "assets": {category: list(paths) for category, paths in self.assets.items()},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Snapshot":
        if not isinstance(data, dict):
            raise ProtocolError(f"snapshotUpdate payload must be an object, got {type(data).__name__}")
        assets = data.get("assets") or {}
        if not isinstance(assets, dict):
            raise ProtocolError("snapshotUpdate 'assets' must be an object of category -> paths")
        for category, paths in assets.items():
            if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
                raise ProtocolError(f"Asset category '{category}' must be a list of paths")
        return cls(
            active_objects=_string_tuple(data.get("activeObjects"), "activeObjects"),
            selected_objects=_string_tuple(data.get("selectedObjects"), "selectedObjects"),
            run_mode=RunMode.parse(data.get("runMode")),
            scene_tree=tuple(SceneNode.from_dict(node) for node in data.get("sceneTree") or ()),
            assets=assets,
        )


def _string_tuple(value: Any, name: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ProtocolError(f"'{name}' must be a list")
    return tuple(str(item) for item in value)


# --- Frames ---

def make_frame(frame_type: str, data: Any) -> Dict[str, Any]:
    return {"type": frame_type, "data": data}


def decode_frame(raw: Any) -> Tuple[str, Any]:
    """
    Validates the envelope of an inbound frame.

    Args:
        raw: A dict or a JSON text as delivered by the transport

    Returns:
        Tuple of (discriminant, payload)

    Raises:
        ProtocolError: If the frame is not a JSON object with a string 'type'
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ProtocolError(f"Frame is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise ProtocolError(f"Frame must be a JSON object, got {type(raw).__name__}")
    frame_type = raw.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        raise ProtocolError("Frame is missing its 'type' discriminant")
    return frame_type, raw.get("data")

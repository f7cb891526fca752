"""
Query Façade

The externally callable surface of the bridge: fetch the mirrored snapshot,
execute a code fragment on the editor, and query the log buffer. Arguments come
in their wire form (plain strings, lists and ISO timestamps) and are validated
here; every failure is a typed BridgeError.
"""

import logging
from typing import Dict, Any, Callable, List, Optional, Union

from bridge.errors import InvalidRequestError, NotConnectedError
from bridge.modules.command_coordinator import CommandCoordinator
from bridge.modules.log_buffer import LogQuery, RingLogBuffer
from bridge.modules.state_mirror import SnapshotView, StateMirror
from bridge.protocol import Severity, parse_timestamp

logger = logging.getLogger(__name__)

SCRIPTS_CATEGORY = "scripts"

SNAPSHOT_MODES = {
    "full": SnapshotView.full(),
    "raw": SnapshotView.full(),
    "scriptsonly": SnapshotView.only(SCRIPTS_CATEGORY),
    "scripts only": SnapshotView.only(SCRIPTS_CATEGORY),
    "noscripts": SnapshotView.excluding(SCRIPTS_CATEGORY),
    "no scripts": SnapshotView.excluding(SCRIPTS_CATEGORY),
}

# Wire names accepted by query_logs, mapped to LogQuery options
LOG_FILTER_OPTIONS = {
    "severities": "severities",
    "types": "severities",
    "messageContains": "message_contains",
    "stackTraceContains": "context_contains",
    "contextContains": "context_contains",
    "timestampAfter": "after",
    "after": "after",
    "timestampBefore": "before",
    "before": "before",
    "count": "limit",
    "limit": "limit",
    "fields": "fields",
}


class QueryFacade:
    def __init__(self,
                 state_mirror: StateMirror,
                 log_buffer: RingLogBuffer,
                 coordinator: CommandCoordinator,
                 is_connected: Callable[[], bool]):
        self.state_mirror = state_mirror
        self.log_buffer = log_buffer
        self.coordinator = coordinator
        self._is_connected = is_connected

    def _require_connection(self) -> None:
        if not self._is_connected():
            raise NotConnectedError()

    def get_snapshot(self, mode: str = "Full") -> Union[Dict[str, Any], List[str]]:
        """
        Returns the mirrored editor state.

        Args:
            mode: 'Full', 'ScriptsOnly' or 'NoScripts' (case-insensitive)
        """
        view = parse_snapshot_mode(mode)
        self._require_connection()
        return self.state_mirror.read_filtered(view)

    async def execute_command(self, code: Any) -> Dict[str, Any]:
        """
        Executes a code fragment on the editor and returns the rendered outcome.

        Raises:
            InvalidRequestError: If ``code`` is not a non-empty string
            CommandError: Any of the coordinator's failures
        """
        if not isinstance(code, str):
            raise InvalidRequestError("The code parameter must be a string")
        if not code.strip():
            raise InvalidRequestError("The code parameter must not be empty")
        outcome = await self.coordinator.execute(code)
        return outcome.to_dict()

    def query_logs(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Returns buffered log events matching ``filters``.

        Args:
            filters: Wire-form filter, e.g. ``{"types": ["Error"], "count": 10,
                "fields": ["message"]}``. None or empty returns everything.
        """
        query = self.build_log_query(filters)
        self._require_connection()
        return self.log_buffer.query(query)

    def build_log_query(self, filters: Optional[Dict[str, Any]]) -> LogQuery:
        if filters is None:
            return LogQuery()
        if not isinstance(filters, dict):
            raise InvalidRequestError("Log filter must be an object")

        options: Dict[str, Any] = {}
        for name, value in filters.items():
            if value is None:
                continue
            option = LOG_FILTER_OPTIONS.get(name)
            if option is None:
                raise InvalidRequestError(
                    f"Unknown log filter option '{name}'. Valid options are: {', '.join(sorted(LOG_FILTER_OPTIONS))}"
                )
            options[option] = value

        if "severities" in options:
            options["severities"] = _parse_severities(options["severities"])
        if "fields" in options:
            options["fields"] = _string_set(options["fields"], "fields")
        for text_option in ("message_contains", "context_contains"):
            if text_option in options and not isinstance(options[text_option], str):
                raise InvalidRequestError(f"'{text_option}' must be a string")
        if "limit" in options:
            options["limit"] = _parse_limit(options["limit"], self.log_buffer.capacity)
        for bound in ("after", "before"):
            if bound in options:
                if not isinstance(options[bound], str):
                    raise InvalidRequestError(f"'{bound}' must be an ISO-8601 timestamp string")
                try:
                    # LogQuery normalises too; parsing here reports bad input as a validation error
                    options[bound] = parse_timestamp(options[bound])
                except ValueError as e:
                    raise InvalidRequestError(f"Invalid '{bound}' timestamp: {e}") from e
        return LogQuery(**options)


def parse_snapshot_mode(mode: Any) -> SnapshotView:
    if mode is None:
        return SnapshotView.full()
    if not isinstance(mode, str) or mode.strip().lower() not in SNAPSHOT_MODES:
        raise InvalidRequestError(f"Invalid snapshot mode {mode!r}. Must be one of: Full, ScriptsOnly, NoScripts")
    return SNAPSHOT_MODES[mode.strip().lower()]


def _string_set(value: Any, name: str) -> frozenset:
    if isinstance(value, str):
        value = [part.strip() for part in value.split(",") if part.strip()]
    if not isinstance(value, (list, tuple, set, frozenset)) or not all(isinstance(v, str) for v in value):
        raise InvalidRequestError(f"'{name}' must be a list of strings")
    return frozenset(value)


def _parse_severities(value: Any) -> frozenset:
    names = _string_set(value, "severities")
    try:
        return frozenset(Severity.parse(name) for name in names)
    except ValueError as e:
        raise InvalidRequestError(f"{e}. Valid severities are: {', '.join(s.value for s in Severity)}") from e


def _parse_limit(value: Any, capacity: int) -> int:
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= capacity:
        raise InvalidRequestError(f"count must be an integer between 1 and {capacity}")
    return value

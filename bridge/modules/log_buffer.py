"""
Ring Log Buffer

Bounded, insertion-ordered store of LogEvents forwarded by the editor, with the
filter/limit/projection query used by the façade and the command coordinator.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, Any, FrozenSet, Iterable, List, Optional, Tuple

from bridge.errors import InvalidRequestError
from bridge.protocol import LogEvent, Severity, LOG_FIELDS, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_LOG_CAPACITY = 1000


@dataclass(frozen=True)
class LogQuery:
    """
    Filter applied by RingLogBuffer.query.

    All options are optional; an empty query returns the whole buffer. ``limit``
    keeps the most recent matches (tail of insertion order) after every other
    filter has been applied, and ``fields`` projects each result down to the
    named fields.
    """
    severities: Optional[FrozenSet[Severity]] = None
    message_contains: Optional[str] = None
    context_contains: Optional[str] = None
    after: Optional[datetime] = None
    before: Optional[datetime] = None
    limit: Optional[int] = None
    fields: Optional[FrozenSet[str]] = None

    def __post_init__(self):
        if self.severities is not None:
            object.__setattr__(self, "severities", frozenset(Severity.parse(s) for s in self.severities))
        if self.fields is not None:
            fields = frozenset(self.fields)
            unknown = sorted(fields - set(LOG_FIELDS))
            if unknown:
                raise InvalidRequestError(
                    f"Unknown log field(s) {unknown}. Valid fields are: {', '.join(LOG_FIELDS)}"
                )
            object.__setattr__(self, "fields", fields)
        if self.limit is not None and (isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1):
            raise InvalidRequestError(f"limit must be a positive integer, got {self.limit!r}")
        for name in ("after", "before"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, parse_timestamp(value))
        if self.after is not None and self.before is not None and self.after > self.before:
            raise InvalidRequestError("'after' must not be later than 'before'")

    def matches(self, event: LogEvent) -> bool:
        if self.severities is not None and event.severity not in self.severities:
            return False
        if self.message_contains is not None and self.message_contains not in event.message:
            return False
        if self.context_contains is not None and self.context_contains not in event.stack_trace:
            return False
        if self.after is not None and event.timestamp < self.after:
            return False
        if self.before is not None and event.timestamp > self.before:
            return False
        return True


class RingLogBuffer:
    """
    Fixed-capacity FIFO of LogEvents.

    Inserting beyond capacity evicts the oldest entry. Every entry is tagged with
    a monotonically increasing sequence number so callers can ask for "everything
    inserted after this point" even after evictions have shifted positions.
    """

    def __init__(self, capacity: int = DEFAULT_LOG_CAPACITY):
        if capacity < 1:
            raise ValueError(f"Log buffer capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._entries: Deque[Tuple[int, LogEvent]] = deque(maxlen=capacity)
        self._next_sequence = 0
        self.evicted_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def next_sequence(self) -> int:
        """Sequence number the next inserted event will receive."""
        return self._next_sequence

    def insert(self, event: LogEvent) -> int:
        if len(self._entries) == self.capacity:
            self.evicted_count += 1
        sequence = self._next_sequence
        self._entries.append((sequence, event))
        self._next_sequence += 1
        return sequence

    def events(self) -> List[LogEvent]:
        return [event for _, event in self._entries]

    def entries_since(self, sequence: int) -> List[LogEvent]:
        """Events inserted at or after ``sequence`` that are still retained."""
        return [event for seq, event in self._entries if seq >= sequence]

    def select(self, query: Optional[LogQuery] = None) -> List[LogEvent]:
        """Filtered and limited events, unprojected."""
        if query is None:
            return self.events()
        matched = [event for _, event in self._entries if query.matches(event)]
        if query.limit is not None:
            matched = matched[-query.limit:]
        return matched

    def query(self, query: Optional[LogQuery] = None) -> List[Dict[str, Any]]:
        """Filtered, limited and projected events, oldest first."""
        fields = query.fields if query is not None else None
        return [event.to_dict(fields) for event in self.select(query)]

    def clear(self) -> None:
        self._entries.clear()
        logger.debug("Log buffer cleared")


def filter_tagged(events: Iterable[LogEvent], tag: str) -> List[str]:
    """Messages of ``events`` that start with the diagnostic ``tag``."""
    return [event.message for event in events if event.message.startswith(tag)]

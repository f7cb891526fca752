"""
State Mirror

Holds the most recently published Snapshot. Publication swaps a single
reference to an immutable Snapshot, so readers never observe a partial update.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, List, Optional, Union

from bridge.protocol import Snapshot

logger = logging.getLogger(__name__)


class ViewKind(Enum):
    FULL = "full"
    ONLY_CATEGORY = "only_category"
    EXCLUDING_CATEGORY = "excluding_category"


@dataclass(frozen=True)
class SnapshotView:
    """Which shape of the snapshot a reader wants."""
    kind: ViewKind = ViewKind.FULL
    category: Optional[str] = None

    @classmethod
    def full(cls) -> "SnapshotView":
        return cls(ViewKind.FULL)

    @classmethod
    def only(cls, category: str) -> "SnapshotView":
        return cls(ViewKind.ONLY_CATEGORY, category)

    @classmethod
    def excluding(cls, category: str) -> "SnapshotView":
        return cls(ViewKind.EXCLUDING_CATEGORY, category)


class StateMirror:
    def __init__(self):
        self._snapshot: Snapshot = Snapshot.empty()
        self.updated_at: Optional[float] = None
        self.publish_count = 0

    def publish(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot
        self.updated_at = time.time()
        self.publish_count += 1
        logger.debug(f"Snapshot published (#{self.publish_count}, {len(snapshot.scene_tree)} root nodes)")

    def read(self) -> Snapshot:
        return self._snapshot

    def read_filtered(self, view: SnapshotView = SnapshotView.full()) -> Union[Dict[str, Any], List[str]]:
        """
        Renders the current snapshot in the requested shape.

        Returns:
            The full snapshot dictionary, a single category's path list, or the
            snapshot dictionary with one category removed.
        """
        snapshot = self._snapshot
        if view.kind is ViewKind.ONLY_CATEGORY:
            return list(snapshot.assets.get(view.category, ()))
        data = snapshot.to_dict()
        if view.kind is ViewKind.EXCLUDING_CATEGORY:
            data["assets"].pop(view.category, None)
        return data

from __future__ import annotations
import threading
from dataclasses import dataclass
from typing import Dict, List, Tuple

from metamirror.core.workflow import Side
from metamirror.translator.utils import reduce_url_by


@dataclass(frozen=True)
class LocationHistoryEntry:
    database: str
    side: Side
    original: str
    target: str
    level: int

    # A level-1 entry is a table directory and keeps its full path; deeper
    # entries (partitions) are lifted back to the directory that moves.
    @property
    def adjusted_original(self) -> str:
        return reduce_url_by(self.original, self.level - 1)

    @property
    def adjusted_target(self) -> str:
        return reduce_url_by(self.target, self.level - 1)


class LocationHistory:
    """Concurrent record of every translated location, keyed by (database, side).

    At most one entry is kept per original location; a later registration
    replaces the earlier one.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, Side], Dict[str, LocationHistoryEntry]] = {}

    def record(self, database: str, side: Side, original: str, target: str, level: int) -> LocationHistoryEntry:
        entry = LocationHistoryEntry(database=database, side=side, original=original, target=target, level=level)
        with self._lock:
            self._entries.setdefault((database, side), {})[original] = entry
        return entry

    def entries(self, database: str, side: Side) -> List[LocationHistoryEntry]:
        with self._lock:
            return list(self._entries.get((database, side), {}).values())

    def keys(self) -> List[Tuple[str, Side]]:
        with self._lock:
            return sorted(self._entries, key=lambda k: (k[0], k[1].value))

    def __len__(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._entries.values())

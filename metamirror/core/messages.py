from __future__ import annotations
import threading
from enum import Enum
from typing import Dict, List


class MessageCode(Enum):
    """Numbered warning and error codes raised during a run."""

    DB_DOESNT_EXIST = (1, "Database doesn't exist on the LEFT cluster")
    COLLECTING_TABLES = (2, "Issue collecting tables")
    DATABASE_CREATION = (3, "Issue creating databases")
    COLLECTING_TABLE_DEFINITIONS = (4, "Issue collecting table definitions")
    TABLE_TRANSFER = (5, "One or more tables failed to transfer")
    RDL_W_EPL_NO_MAPPING = (20, "Partition location was not remapped by the global location map; "
                                "reset-to-default-location cannot move it")
    LOCATION_NOT_MATCH_WAREHOUSE = (21, "Translated location does not sit under the expected warehouse directory")
    PARTITION_LOCATION_NOT_SET = (22, "Partition location is not set and cannot be translated")
    DISTCP_FOR_SO_ACID = (23, "Bulk copy is not supported for transactional tables without downgrade")
    ACID_NOT_ON = (24, "Transactional table found but ACID migration is not enabled")
    EXPORT_IMPORT_PARTITION_LIMIT = (25, "Partition count exceeds the export/import limit; using SQL")
    SQL_PARTITION_LIMIT = (26, "Partition count exceeds the SQL limit; SQL must be run manually")
    ACID_PARTITION_LIMIT = (27, "Partition count exceeds the ACID limit; SQL must be run manually")
    RIGHT_DISCONNECTED = (28, "RIGHT cluster is disconnected; SQL must be run manually")
    STORAGE_MIGRATION_NAMESPACE = (29, "Storage migration location needs a global location map entry")
    TABLE_LOCATION_TRANSLATION = (30, "Table location could not be translated")

    def __init__(self, code: int, desc: str):
        self.code = code
        self.desc = desc


class CodeRegistry:
    """Thread-safe collection of the codes raised during one run."""

    def __init__(self):
        self._lock = threading.Lock()
        self._errors: Dict[MessageCode, List[str]] = {}
        self._warnings: Dict[MessageCode, List[str]] = {}

    def add_error(self, code: MessageCode, detail: str = "") -> None:
        with self._lock:
            self._errors.setdefault(code, [])
            if detail:
                self._errors[code].append(detail)

    def add_warning(self, code: MessageCode, detail: str = "") -> None:
        with self._lock:
            self._warnings.setdefault(code, [])
            if detail:
                self._warnings[code].append(detail)

    @property
    def errors(self) -> List[MessageCode]:
        with self._lock:
            return sorted(self._errors, key=lambda c: c.code)

    @property
    def warnings(self) -> List[MessageCode]:
        with self._lock:
            return sorted(self._warnings, key=lambda c: c.code)

    def has_error(self, code: MessageCode) -> bool:
        with self._lock:
            return code in self._errors

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "errors": {c.name: list(v) for c, v in self._errors.items()},
                "warnings": {c.name: list(v) for c, v in self._warnings.items()},
            }

    @classmethod
    def from_dict(cls, data: dict) -> "CodeRegistry":
        registry = cls()
        for name, details in (data or {}).get("errors", {}).items():
            registry._errors[MessageCode[name]] = list(details)
        for name, details in (data or {}).get("warnings", {}).items():
            registry._warnings[MessageCode[name]] = list(details)
        return registry

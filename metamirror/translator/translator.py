from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from metamirror.core.errors import MappingRequiredError, TranslationError
from metamirror.core.messages import CodeRegistry, MessageCode
from metamirror.core.workflow import DataFlow, Side, StrategyKind
from metamirror.records.models import (
    DB_LOCATION, DB_MANAGED_LOCATION, NOT_SET, DatabaseRecord, TableRecord,
)
from metamirror.schemas.config import RunConfig
from metamirror.services import ddl
from metamirror.translator.history import LocationHistory
from metamirror.translator.utils import dir_depth

log = logging.getLogger(__name__)

_NAMESPACE_REPLACED = frozenset({
    StrategyKind.EXPORT_IMPORT, StrategyKind.HYBRID, StrategyKind.SQL, StrategyKind.SCHEMA_ONLY,
    StrategyKind.DUMP, StrategyKind.STORAGE_MIGRATION, StrategyKind.CONVERT_LINKED, StrategyKind.ACID,
    StrategyKind.SQL_ACID_DOWNGRADE_INPLACE, StrategyKind.HYBRID_ACID_DOWNGRADE_INPLACE,
})
# These share storage with the LEFT cluster.
_SHARED_STORAGE = frozenset({StrategyKind.LINKED, StrategyKind.COMMON})


@dataclass(frozen=True)
class TranslatedLocation:
    location: str
    remapped: bool


class LocationTranslator:
    """Computes target storage locations and records them for copy planning."""

    def __init__(self, config: RunConfig, history: Optional[LocationHistory] = None,
                 codes: Optional[CodeRegistry] = None):
        self.config = config
        self.history = history if history is not None else LocationHistory()
        self.codes = codes if codes is not None else CodeRegistry()

    def map_global_location(self, location: str) -> str:
        # First matching prefix wins, even when a longer prefix declared later
        # would also match.
        for prefix, replacement in self.config.global_location_map.items():
            if location.startswith(prefix):
                return replacement + location[len(prefix):]
        return location

    def history_side(self) -> Side:
        cfg = self.config
        if cfg.transfer.intermediate_storage or cfg.transfer.common_storage:
            return Side.LEFT
        if cfg.strategy == StrategyKind.STORAGE_MIGRATION:
            return Side.LEFT
        return Side.LEFT if cfg.data_flow == DataFlow.PUSH else Side.RIGHT

    def translate(self, database: str, table: str, original: str, level: int,
                  partition_spec: Optional[str] = None) -> TranslatedLocation:
        cfg = self.config
        left_ns = cfg.left.namespace
        if not left_ns or not original.startswith(left_ns):
            raise TranslationError(
                f"{database}.{table}: location {original} is not in the LEFT namespace {left_ns}")

        target_ns = cfg.target_namespace
        if not target_ns:
            raise TranslationError(f"{database}.{table}: no target namespace configured")

        relative_dir = original[len(left_ns):]
        mapped_dir = self.map_global_location(relative_dir)
        remapped = mapped_dir != relative_dir

        if (not remapped and cfg.strategy == StrategyKind.STORAGE_MIGRATION
                and target_ns == left_ns and not cfg.reset_to_default_location):
            self.codes.add_error(MessageCode.STORAGE_MIGRATION_NAMESPACE, f"{database}.{table}")
            raise MappingRequiredError(
                f"{database}.{table}: {original} has no global location map entry; "
                f"storage migration within {left_ns} would not move it")

        ext_dir = cfg.transfer.warehouse.for_database(database).external_directory
        if remapped:
            location = target_ns + mapped_dir
        elif cfg.reset_to_default_location and ext_dir:
            location = f"{target_ns}{ext_dir}/{cfg.resolved_db(database)}.db/{table}"
            if partition_spec:
                location = f"{location}/{partition_spec}"
        elif cfg.strategy in _SHARED_STORAGE:
            location = original
        elif cfg.strategy in _NAMESPACE_REPLACED:
            location = target_ns + relative_dir
        else:
            location = original

        if cfg.distcp and cfg.strategy != StrategyKind.SQL:
            self.record_location(cfg.resolved_db(database), self.history_side(), original, location, level)

        log.debug("Translated %s -> %s (remapped=%s)", original, location, remapped,
                  extra={"table": f"{database}.{table}"})
        return TranslatedLocation(location=location, remapped=remapped)

    def record_location(self, database: str, side: Side, original: str, target: str, level: int) -> None:
        self.history.record(database, side, original, target, level)

    def translate_table_location(self, table: TableRecord) -> Optional[str]:
        """Translate the LEFT table location and write it into the RIGHT definition."""
        left = table.env(Side.LEFT)
        original = ddl.get_location(left.definition)
        if original is None:
            return None
        result = self.translate(table.db_name, table.name, original, 1)
        table.remapped = table.remapped or result.remapped
        right = table.env(Side.RIGHT)
        if right.definition:
            ddl.update_location(right.definition, result.location)
        return result.location

    def translate_partition_locations(self, db_record: DatabaseRecord, table: TableRecord) -> bool:
        """Translate every RIGHT partition location in place.

        Returns False when at least one partition could not be translated.
        """
        cfg = self.config
        left = table.env(Side.LEFT)
        if not (cfg.strategy == StrategyKind.SCHEMA_ONLY and cfg.evaluate_partition_location
                and ddl.is_partitioned(left.definition)):
            return True

        # Always start from the LEFT locations; a retried table still carries last run's targets.
        right = table.env(Side.RIGHT)
        right.partitions = dict(left.partitions)

        dirs = cfg.transfer.warehouse.for_database(db_record.name)
        right_db = db_record.definition(Side.RIGHT) or {}
        external = ddl.is_external(left.definition)
        expected_root = right_db.get(DB_LOCATION if external else DB_MANAGED_LOCATION)

        rtn = True
        for spec, location in list(right.partitions.items()):
            if not location or location == NOT_SET:
                right.add_issue(f"{MessageCode.PARTITION_LOCATION_NOT_SET.desc}: {spec}")
                self.codes.add_warning(MessageCode.PARTITION_LOCATION_NOT_SET, f"{table.db_name}.{table.name}")
                rtn = False
                continue
            level = dir_depth(spec)
            if not cfg.is_table_filtering:
                level += 1
            level += 1
            result = self.translate(db_record.name, table.name, location, level, spec)
            right.partitions[spec] = result.location
            if not result.remapped and cfg.reset_to_default_location:
                right.add_issue(f"{MessageCode.RDL_W_EPL_NO_MAPPING.desc}: {spec} -> {result.location}")
                self.codes.add_warning(MessageCode.RDL_W_EPL_NO_MAPPING, f"{table.db_name}.{table.name}")
                rtn = False
            if dirs.complete and expected_root and not result.location.startswith(expected_root):
                right.add_issue(
                    f"{MessageCode.LOCATION_NOT_MATCH_WAREHOUSE.desc}: {spec} -> {result.location} "
                    f"(expected under {expected_root})")
                self.codes.add_warning(MessageCode.LOCATION_NOT_MATCH_WAREHOUSE, f"{table.db_name}.{table.name}")
        return rtn

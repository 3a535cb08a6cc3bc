from __future__ import annotations
import logging
from typing import Dict, Optional

from metamirror.core.workflow import Side, StrategyKind
from metamirror.records.models import (
    DB_COMMENT, DB_LOCATION, DB_MANAGED_LOCATION, DB_NAME, DB_OWNER_NAME, DB_OWNER_TYPE, DatabaseRecord,
)
from metamirror.schemas.config import RunConfig
from metamirror.translator.translator import LocationTranslator

log = logging.getLogger(__name__)


def _translate_db_location(config: RunConfig, translator: LocationTranslator, location: Optional[str]) -> Optional[str]:
    left_ns = config.left.namespace
    target_ns = config.target_namespace
    if not location or not left_ns or not target_ns or not location.startswith(left_ns):
        return None
    return target_ns + translator.map_global_location(location[len(left_ns):])


def planned_right_definition(config: RunConfig, translator: LocationTranslator,
                             db_record: DatabaseRecord) -> Dict[str, str]:
    """Where the database should live on the target, given the warehouse policy."""
    left = db_record.definition(Side.LEFT) or {}
    resolved = config.resolved_db(db_record.name)
    dirs = config.transfer.warehouse.for_database(db_record.name)
    target_ns = config.target_namespace or ""

    planned: Dict[str, str] = {DB_NAME: resolved}
    if left.get(DB_COMMENT):
        planned[DB_COMMENT] = left[DB_COMMENT]
    if dirs.external_directory:
        planned[DB_LOCATION] = f"{target_ns}{dirs.external_directory}/{resolved}.db"
    else:
        location = _translate_db_location(config, translator, left.get(DB_LOCATION))
        if location:
            planned[DB_LOCATION] = location
    if dirs.managed_directory:
        planned[DB_MANAGED_LOCATION] = f"{target_ns}{dirs.managed_directory}/{resolved}.db"
    else:
        managed = _translate_db_location(config, translator, left.get(DB_MANAGED_LOCATION))
        if managed:
            planned[DB_MANAGED_LOCATION] = managed
    if config.transfer_ownership and left.get(DB_OWNER_NAME):
        planned[DB_OWNER_NAME] = left[DB_OWNER_NAME]
        planned[DB_OWNER_TYPE] = left.get(DB_OWNER_TYPE, "USER")
    return planned


def _alter_locations(db_record: DatabaseRecord, side: Side, name: str, current: Dict[str, str],
                     planned: Dict[str, str], legacy: bool) -> None:
    if planned.get(DB_LOCATION) and planned[DB_LOCATION] != current.get(DB_LOCATION):
        db_record.add_sql(side, "Alter Database Location",
                          f"ALTER DATABASE {name} SET LOCATION \"{planned[DB_LOCATION]}\"")
    if not legacy and planned.get(DB_MANAGED_LOCATION) \
            and planned[DB_MANAGED_LOCATION] != current.get(DB_MANAGED_LOCATION):
        db_record.add_sql(side, "Alter Database Managed Location",
                          f"ALTER DATABASE {name} SET MANAGEDLOCATION \"{planned[DB_MANAGED_LOCATION]}\"")


def build_database_statements(config: RunConfig, translator: LocationTranslator, db_record: DatabaseRecord) -> bool:
    """Fill in the LEFT/RIGHT database SQL for the configured strategy."""
    planned = planned_right_definition(config, translator, db_record)
    name = planned[DB_NAME]
    # Rebuilt from scratch when a run is resumed.
    db_record.sql.clear()
    strategy = config.strategy

    if strategy == StrategyKind.STORAGE_MIGRATION:
        # Same cluster: only the database's default locations move.
        current = db_record.definition(Side.LEFT) or {}
        _alter_locations(db_record, Side.LEFT, db_record.name, current, planned, config.left.legacy)
        return True

    existing = db_record.definition(Side.RIGHT)
    side = Side.LEFT if strategy == StrategyKind.DUMP else Side.RIGHT
    legacy = config.left.legacy if side == Side.LEFT else config.right.legacy

    if existing and strategy != StrategyKind.DUMP:
        if not config.read_only:
            _alter_locations(db_record, side, name, existing, planned, legacy)
    else:
        create = f"CREATE DATABASE IF NOT EXISTS {name}"
        if planned.get(DB_COMMENT):
            create += f"\nCOMMENT \"{planned[DB_COMMENT]}\""
        if planned.get(DB_LOCATION):
            create += f"\nLOCATION \"{planned[DB_LOCATION]}\""
        if planned.get(DB_MANAGED_LOCATION) and not legacy:
            create += f"\nMANAGEDLOCATION \"{planned[DB_MANAGED_LOCATION]}\""
        db_record.add_sql(side, "Create Database", create)

    if planned.get(DB_OWNER_NAME):
        db_record.add_sql(side, "Set Database Owner",
                          f"ALTER DATABASE {name} SET OWNER {planned[DB_OWNER_TYPE]} {planned[DB_OWNER_NAME]}")

    # Later location checks compare against where the database will live.
    merged = dict(existing or {})
    merged.update(planned)
    db_record.set_definition(Side.RIGHT, merged)
    log.debug("%s: database statements built for %s", db_record.name, side.value)
    return True

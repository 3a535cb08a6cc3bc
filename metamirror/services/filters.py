from __future__ import annotations
from typing import Optional

from metamirror.core.workflow import Side, StrategyKind
from metamirror.records.models import DATA_SIZE, TableRecord
from metamirror.schemas.config import RunConfig
from metamirror.services import ddl


def name_filter_reason(config: RunConfig, name: str) -> Optional[str]:
    """Reason a table name is excluded from processing, or None when it is kept."""
    transfer = config.transfer
    if name.startswith(transfer.transfer_prefix):
        return ("The name matches the transfer prefix and is most likely a remnant of a previous run. "
                "If this is a mistake, change the transfer prefix to something more unique.")
    if name.startswith(transfer.shadow_prefix):
        return "The name matches the shadow prefix and is most likely a remnant of a previous run."
    if name.endswith(transfer.storage_migration_postfix):
        return "The name is the result of a previous STORAGE_MIGRATION attempt that has not been cleaned up."
    include = config.filter.include_pattern
    if include is not None:
        if not include.fullmatch(name):
            return "Didn't match the table include filter."
        return None
    exclude = config.filter.exclude_pattern
    if exclude is not None and exclude.fullmatch(name):
        return "Matched the table exclude filter."
    return None


def check_table_filter(config: RunConfig, table: TableRecord) -> None:
    """Flag a table for removal based on its LEFT definition."""
    definition = table.env(Side.LEFT).definition
    if not definition:
        return

    view = ddl.is_view(definition)
    if config.migrate_view:
        if not view:
            table.mark_removed("VIEW only migration; this is not a view.")
            return
    elif view:
        # Views are only carried along with DUMP or SCHEMA_ONLY runs.
        if config.strategy not in (StrategyKind.DUMP, StrategyKind.SCHEMA_ONLY):
            table.mark_removed("This is a VIEW and view migration is not enabled.")
            return

    acid = ddl.is_acid(definition)
    if acid and not config.migrate_acid.on and not config.migrate_acid.only:
        table.mark_removed("ACID table and ACID processing not selected.")
        return
    if config.migrate_acid.only and not acid:
        table.mark_removed("Non-ACID table and ACID only processing selected.")
        return

    if not ddl.is_hive_native(definition) and not config.migrate_non_native:
        table.mark_removed("This is a non-native table and non-native migration is not enabled.")
        return

    if config.strategy == StrategyKind.STORAGE_MIGRATION and ddl.is_storage_migrated(definition):
        table.mark_removed("The table has already gone through STORAGE_MIGRATION.")


def check_size_filter(config: RunConfig, table: TableRecord) -> None:
    limit = config.filter.size_limit
    if limit <= 0 or table.remove:
        return
    size = table.env(Side.LEFT).statistics.get(DATA_SIZE)
    if size is not None and size > limit * 1024 * 1024:
        table.mark_removed(f"The table dataset size exceeds the size limit of {limit}MB.")


def check_partition_filter(config: RunConfig, table: TableRecord) -> None:
    limit = config.filter.partition_limit
    if limit <= 0 or table.remove:
        return
    count = len(table.env(Side.LEFT).partitions)
    if count > limit:
        table.mark_removed(f"The table partition count ({count}) exceeds the partition limit of {limit}.")

from __future__ import annotations
import logging
from datetime import datetime, timezone

from metamirror.core.messages import MessageCode
from metamirror.core.workflow import CreateStrategy, Side, StrategyKind, TaskStatus
from metamirror.records.models import NOT_SET
from metamirror.services import ddl
from metamirror.strategies.base import (
    Strategy, StrategyContext, StrategyResult, add_create_sql, archive_name,
)
from metamirror.strategies.sql import insert_overwrite, partition_limit_issue
from metamirror.translator.utils import dir_depth

log = logging.getLogger(__name__)


class StorageMigrationStrategy(Strategy):
    """Move a table to new storage on the same cluster.

    With bulk copy the data is copied out of band and only locations are
    altered; otherwise the data is rewritten with INSERT OVERWRITE.
    """

    kind = StrategyKind.STORAGE_MIGRATION

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        if ctx.config.distcp:
            return self._alter_locations(ctx)
        return self._rewrite(ctx)

    def _flag(self, ctx: StrategyContext) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        ctx.left.add_sql("Flag storage migration",
                         f"ALTER TABLE {ctx.table.name} SET TBLPROPERTIES "
                         f"(\"{ddl.STORAGE_MIGRATED_FLAG}\"=\"{stamp}\")")

    def _alter_locations(self, ctx: StrategyContext) -> StrategyResult:
        table = ctx.table
        left = ctx.left
        original = ddl.get_location(left.definition)
        if original is None:
            msg = "Table has no location to migrate"
            table.add_error(Side.LEFT, msg)
            return StrategyResult.failed(msg)

        result = ctx.translator.translate(table.db_name, table.name, original, 1)
        table.remapped = result.remapped
        left.add_sql("Selecting DB", f"USE {table.db_name}")
        left.add_sql("Alter Table Location", f"ALTER TABLE {table.name} SET LOCATION \"{result.location}\"")

        status = TaskStatus.SUCCESS
        base_level = 1 if ctx.config.is_table_filtering else 2
        for spec in sorted(left.partitions):
            location = left.partitions[spec]
            if not location or location == NOT_SET:
                table.add_issue(Side.LEFT, f"{MessageCode.PARTITION_LOCATION_NOT_SET.desc}: {spec}")
                status = TaskStatus.INCOMPLETE
                continue
            translated = ctx.translator.translate(table.db_name, table.name, location,
                                                  dir_depth(spec) + base_level, spec)
            left.add_sql(f"Alter Partition Location {spec}",
                         f"ALTER TABLE {table.name} PARTITION ({ddl.partition_spec_to_sql(spec)}) "
                         f"SET LOCATION \"{translated.location}\"")
        self._flag(ctx)
        return StrategyResult(status=status, apply_sides=(Side.LEFT,))

    def _rewrite(self, ctx: StrategyContext) -> StrategyResult:
        cfg = ctx.config
        table = ctx.table
        left = ctx.left
        manual = partition_limit_issue(ctx, Side.LEFT)

        new_name = f"{table.name}{cfg.transfer.storage_migration_postfix}"
        staged = table.env(Side.TRANSFER)
        staged.name = new_name
        staged.definition = list(left.definition)
        acid = ddl.is_acid(left.definition)
        original = ddl.get_location(left.definition)
        if original and not acid:
            result = ctx.translator.translate(table.db_name, table.name, original, 1)
            table.remapped = result.remapped
            ddl.update_location(staged.definition, result.location)
        else:
            # Transactional tables land in the (already moved) database default location.
            ddl.remove_location(staged.definition)
        staged.create_strategy = CreateStrategy.REPLACE
        add_create_sql(ctx, Side.LEFT, staged, new_name, table.db_name)

        for stmt in insert_overwrite(ctx, new_name, table.name, ddl.partition_columns(left.definition)):
            left.add_sql("Moving data to new storage", stmt)
        archive = archive_name(table.name)
        left.add_sql("Archiving original table", f"ALTER TABLE {table.name} RENAME TO {archive}")
        left.add_sql("Swapping in migrated table", f"ALTER TABLE {new_name} RENAME TO {table.name}")
        self._flag(ctx)
        left.add_cleanup_sql("Dropping archived table", f"DROP TABLE IF EXISTS {archive}")

        status = TaskStatus.INCOMPLETE if manual else TaskStatus.SUCCESS
        return StrategyResult(status=status, apply_sides=(Side.LEFT,), auto_apply=not manual)

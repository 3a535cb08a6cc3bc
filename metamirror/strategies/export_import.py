from __future__ import annotations
import logging

from metamirror.core.messages import MessageCode
from metamirror.core.workflow import CreateStrategy, Side, StrategyKind, TaskStatus
from metamirror.services import ddl
from metamirror.strategies.base import (
    Strategy, StrategyContext, StrategyResult, archive_name, intermediate_location, over_limit,
    prepare_right_definition, resolve_right_create,
)

log = logging.getLogger(__name__)


def export_location(ctx: StrategyContext) -> str:
    cfg = ctx.config
    hop = intermediate_location(cfg, ctx.run_key, ctx.table.db_name, ctx.table.name)
    if hop:
        return hop
    return f"{cfg.left.namespace}{cfg.transfer.export_base_dir_prefix}{ctx.table.db_name}/{ctx.table.name}"


class ExportImportStrategy(Strategy):
    """EXPORT on the LEFT, IMPORT on the RIGHT from the same directory."""

    kind = StrategyKind.EXPORT_IMPORT

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        cfg = ctx.config
        table = ctx.table
        acid = ddl.is_acid(ctx.left.definition)
        if acid and not cfg.migrate_acid.on:
            msg = MessageCode.ACID_NOT_ON.desc
            table.add_error(Side.LEFT, msg)
            ctx.codes.add_error(MessageCode.ACID_NOT_ON, f"{table.db_name}.{table.name}")
            return StrategyResult.failed(msg)

        keep_acid = acid and not cfg.migrate_acid.downgrade
        definition = prepare_right_definition(ctx, external=not keep_acid)
        if resolve_right_create(ctx) == CreateStrategy.LEAVE:
            return StrategyResult(status=TaskStatus.SUCCESS)

        if over_limit(ctx.partition_count, cfg.hybrid.export_import_partition_limit):
            table.add_issue(Side.LEFT, f"{MessageCode.EXPORT_IMPORT_PARTITION_LIMIT.desc} "
                                       f"({ctx.partition_count} > {cfg.hybrid.export_import_partition_limit})")

        location = None
        if not keep_acid and ddl.get_location(definition):
            location = ctx.translator.translate_table_location(table)

        export_dir = export_location(ctx)
        ctx.left.add_sql("Selecting DB", f"USE {table.db_name}")
        ctx.left.add_sql("Export Table", f"EXPORT TABLE {table.name} TO \"{export_dir}\"")

        right = ctx.right
        right.add_sql("Selecting DB", f"USE {ctx.right_db}")
        if right.create_strategy == CreateStrategy.REPLACE:
            right.add_sql("Drop Table", f"DROP TABLE IF EXISTS {table.name}")
        if keep_acid:
            right.add_sql("Import Table", f"IMPORT TABLE {table.name} FROM \"{export_dir}\"")
        elif location:
            right.add_sql("Import Table", f"IMPORT EXTERNAL TABLE {table.name} FROM \"{export_dir}\" LOCATION \"{location}\"")
        else:
            right.add_sql("Import Table", f"IMPORT EXTERNAL TABLE {table.name} FROM \"{export_dir}\"")
        if not keep_acid and not cfg.no_purge and ddl.is_managed(ctx.left.definition):
            right.add_sql("Set purge", f"ALTER TABLE {table.name} SET TBLPROPERTIES (\"{ddl.EXTERNAL_PURGE}\"=\"true\")")
        return StrategyResult(status=TaskStatus.SUCCESS, apply_sides=(Side.LEFT, Side.RIGHT))


class HybridAcidDowngradeInplaceStrategy(Strategy):
    """In-place downgrade through EXPORT/IMPORT, or SQL when over the export/import limit."""

    kind = StrategyKind.HYBRID_ACID_DOWNGRADE_INPLACE

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        cfg = ctx.config
        table = ctx.table
        if over_limit(ctx.partition_count, cfg.hybrid.export_import_partition_limit):
            table.add_step("HYBRID", StrategyKind.SQL_ACID_DOWNGRADE_INPLACE.value)
            return ctx.registry.get(StrategyKind.SQL_ACID_DOWNGRADE_INPLACE).execute(ctx)

        archive = archive_name(table.name)
        export_dir = export_location(ctx)
        left = ctx.left
        left.add_sql("Selecting DB", f"USE {table.db_name}")
        left.add_sql("Export Table", f"EXPORT TABLE {table.name} TO \"{export_dir}\"")
        left.add_sql("Archiving transactional table", f"ALTER TABLE {table.name} RENAME TO {archive}")
        left.add_sql("Import as external", f"IMPORT EXTERNAL TABLE {table.name} FROM \"{export_dir}\"")
        left.add_sql("Flag downgrade",
                     f"ALTER TABLE {table.name} SET TBLPROPERTIES (\"{ddl.DOWNGRADED_FROM_ACID}\"=\"true\")")
        if not cfg.no_purge:
            left.add_sql("Set purge", f"ALTER TABLE {table.name} SET TBLPROPERTIES (\"{ddl.EXTERNAL_PURGE}\"=\"true\")")
        left.add_cleanup_sql("Dropping archived table", f"DROP TABLE IF EXISTS {archive}")
        return StrategyResult(status=TaskStatus.SUCCESS, apply_sides=(Side.LEFT,), strategy=self.kind)

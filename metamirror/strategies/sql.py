from __future__ import annotations
import logging
from typing import List

from metamirror.core.messages import MessageCode
from metamirror.core.workflow import CreateStrategy, Side, StrategyKind, TaskStatus
from metamirror.services import ddl
from metamirror.strategies.base import (
    Strategy, StrategyContext, StrategyResult, add_create_sql, archive_name, intermediate_location,
    over_limit, prepare_right_definition, resolve_right_create, shadow_name, transfer_name,
)

log = logging.getLogger(__name__)


def insert_overwrite(ctx: StrategyContext, target: str, source: str, partition_cols: List[str]) -> List[str]:
    """INSERT OVERWRITE statements, with dynamic-partition settings when needed."""
    statements: List[str] = []
    if not partition_cols:
        statements.append(f"INSERT OVERWRITE TABLE {target} SELECT * FROM {source}")
        return statements
    statements.append("SET hive.exec.dynamic.partition=true")
    statements.append("SET hive.exec.dynamic.partition.mode=nonstrict")
    cols = ", ".join(partition_cols)
    opt = ctx.config.optimization
    if opt.sort_dynamic_partition_inserts:
        statements.append("SET hive.optimize.sort.dynamic.partition=true")
        statements.append(f"INSERT OVERWRITE TABLE {target} PARTITION ({cols}) SELECT * FROM {source}")
    elif not opt.skip:
        statements.append(f"INSERT OVERWRITE TABLE {target} PARTITION ({cols}) SELECT * FROM {source} "
                          f"DISTRIBUTE BY {cols}")
    else:
        statements.append(f"INSERT OVERWRITE TABLE {target} PARTITION ({cols}) SELECT * FROM {source}")
    return statements


def partition_limit_issue(ctx: StrategyContext, side: Side) -> bool:
    """Flag tables whose partition count is over the applicable limit; they need a manual run."""
    acid = ddl.is_acid(ctx.left.definition)
    if acid:
        limit, code = ctx.config.migrate_acid.partition_limit, MessageCode.ACID_PARTITION_LIMIT
    else:
        limit, code = ctx.config.hybrid.sql_partition_limit, MessageCode.SQL_PARTITION_LIMIT
    if not over_limit(ctx.partition_count, limit):
        return False
    ctx.table.add_issue(side, f"{code.desc} ({ctx.partition_count} > {limit})")
    ctx.codes.add_warning(code, f"{ctx.table.db_name}.{ctx.table.name}")
    return True


class SqlStrategy(Strategy):
    """Data moved by the RIGHT cluster reading a shadow table over the LEFT data."""

    kind = StrategyKind.SQL

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        cfg = ctx.config
        acid = ddl.is_acid(ctx.left.definition)
        if acid and cfg.migrate_acid.downgrade and cfg.migrate_acid.in_place:
            return ctx.registry.get(StrategyKind.SQL_ACID_DOWNGRADE_INPLACE).execute(ctx)
        if cfg.transfer.intermediate_storage or cfg.transfer.common_storage or (acid and cfg.migrate_acid.on):
            ctx.table.add_step("SQL", "Using intermediate transfer")
            return ctx.registry.get(StrategyKind.ACID).execute(ctx)

        manual = partition_limit_issue(ctx, Side.RIGHT)
        prepare_right_definition(ctx)
        if resolve_right_create(ctx) == CreateStrategy.LEAVE:
            return StrategyResult(status=TaskStatus.SUCCESS)
        ctx.translator.translate_table_location(ctx.table)

        # Shadow table on the RIGHT, over the LEFT data.
        shadow = ctx.table.env(Side.SHADOW)
        shadow.name = shadow_name(cfg, ctx.table.name)
        shadow.definition = list(ctx.left.definition)
        ddl.make_external(shadow.definition, purge=False)
        ddl.remove_tbl_property(shadow.definition, ddl.EXTERNAL_PURGE)
        shadow.create_strategy = CreateStrategy.REPLACE
        add_create_sql(ctx, Side.RIGHT, shadow, shadow.name, ctx.right_db)
        if ddl.is_partitioned(shadow.definition):
            ctx.right.add_sql("Repairing shadow partitions", f"MSCK REPAIR TABLE {shadow.name}")

        add_create_sql(ctx, Side.RIGHT, ctx.right, ctx.table.name, ctx.right_db)
        for stmt in insert_overwrite(ctx, ctx.table.name, shadow.name, ddl.partition_columns(ctx.left.definition)):
            ctx.right.add_sql("Moving data", stmt)
        ctx.right.add_cleanup_sql("Dropping shadow table", f"DROP TABLE IF EXISTS {shadow.name}")

        status = TaskStatus.INCOMPLETE if manual else TaskStatus.SUCCESS
        return StrategyResult(status=status, apply_sides=(Side.RIGHT,), auto_apply=not manual)


class CommonStrategy(Strategy):
    """Both clusters share storage: the RIGHT schema points at the same data."""

    kind = StrategyKind.COMMON

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        if ddl.is_acid(ctx.left.definition):
            msg = "ACID tables can't share storage between clusters; use ACID migration."
            ctx.table.add_error(Side.RIGHT, msg)
            return StrategyResult.failed(msg)
        definition = prepare_right_definition(ctx, purge=False)
        ddl.remove_tbl_property(definition, ddl.EXTERNAL_PURGE)
        if resolve_right_create(ctx) == CreateStrategy.LEAVE:
            return StrategyResult(status=TaskStatus.SUCCESS)
        if ddl.get_location(definition):
            ctx.translator.translate_table_location(ctx.table)
        add_create_sql(ctx, Side.RIGHT, ctx.right, ctx.table.name, ctx.right_db)
        if ddl.is_partitioned(definition):
            ctx.right.add_sql("Repairing partitions", f"MSCK REPAIR TABLE {ctx.table.name}")
        return StrategyResult(status=TaskStatus.SUCCESS, apply_sides=(Side.RIGHT,))


class IntermediateStrategy(Strategy):
    """LEFT writes a transfer table on intermediate/common storage; RIGHT loads it.

    Used for transactional tables and whenever a storage hop is configured.
    """

    kind = StrategyKind.ACID

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        cfg = ctx.config
        table = ctx.table
        acid = ddl.is_acid(ctx.left.definition)
        keep_acid = acid and not cfg.migrate_acid.downgrade
        definition = prepare_right_definition(ctx, external=not keep_acid)
        if resolve_right_create(ctx) == CreateStrategy.LEAVE:
            return StrategyResult(status=TaskStatus.SUCCESS)
        manual = partition_limit_issue(ctx, Side.LEFT)

        hop = intermediate_location(cfg, ctx.run_key, table.db_name, table.name)
        if hop is None:
            # No storage hop: the RIGHT cluster reads the transfer table in the LEFT namespace.
            hop = (f"{cfg.left.namespace}{cfg.transfer.export_base_dir_prefix}"
                   f"{table.db_name}/{transfer_name(cfg, table.name)}")

        transfer = table.env(Side.TRANSFER)
        transfer.name = transfer_name(cfg, table.name)
        transfer.definition = list(ctx.left.definition)
        ddl.make_external(transfer.definition, purge=False)
        ddl.remove_tbl_property(transfer.definition, ddl.EXTERNAL_PURGE)
        ddl.set_location(transfer.definition, hop)
        transfer.create_strategy = CreateStrategy.REPLACE
        add_create_sql(ctx, Side.LEFT, transfer, transfer.name, table.db_name)
        partition_cols = ddl.partition_columns(ctx.left.definition)
        for stmt in insert_overwrite(ctx, transfer.name, table.name, partition_cols):
            ctx.left.add_sql("Moving data to transfer table", stmt)
        ctx.left.add_cleanup_sql("Dropping transfer table", f"DROP TABLE IF EXISTS {transfer.name}")

        shadow = table.env(Side.SHADOW)
        shadow.name = shadow_name(cfg, table.name)
        shadow.definition = list(transfer.definition)
        shadow.create_strategy = CreateStrategy.REPLACE
        add_create_sql(ctx, Side.RIGHT, shadow, shadow.name, ctx.right_db)
        if partition_cols:
            ctx.right.add_sql("Repairing shadow partitions", f"MSCK REPAIR TABLE {shadow.name}")

        if keep_acid:
            ddl.remove_location(definition)
        elif ddl.get_location(definition):
            ctx.translator.translate_table_location(table)
        if acid and not keep_acid:
            ddl.upsert_tbl_property(definition, ddl.DOWNGRADED_FROM_ACID, "true")
        add_create_sql(ctx, Side.RIGHT, ctx.right, table.name, ctx.right_db)
        for stmt in insert_overwrite(ctx, table.name, shadow.name, partition_cols):
            ctx.right.add_sql("Moving data from shadow table", stmt)
        ctx.right.add_cleanup_sql("Dropping shadow table", f"DROP TABLE IF EXISTS {shadow.name}")

        status = TaskStatus.INCOMPLETE if manual else TaskStatus.SUCCESS
        return StrategyResult(status=status, apply_sides=(Side.LEFT, Side.RIGHT), auto_apply=not manual)


class SqlAcidDowngradeInplaceStrategy(Strategy):
    """Rewrite a transactional table as an external one on the LEFT cluster."""

    kind = StrategyKind.SQL_ACID_DOWNGRADE_INPLACE

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        table = ctx.table
        left = ctx.left
        manual = partition_limit_issue(ctx, Side.LEFT)
        archive = archive_name(table.name)

        definition = list(left.definition)
        ddl.make_external(definition, purge=not ctx.config.no_purge)
        ddl.remove_location(definition)
        ddl.upsert_tbl_property(definition, ddl.DOWNGRADED_FROM_ACID, "true")
        ddl.change_table_name(definition, table.name)

        left.add_sql("Selecting DB", f"USE {table.db_name}")
        left.add_sql("Archiving transactional table", f"ALTER TABLE {table.name} RENAME TO {archive}")
        left.add_sql("Creating downgraded table", ddl.create_statement(definition))
        for stmt in insert_overwrite(ctx, table.name, archive, ddl.partition_columns(left.definition)):
            left.add_sql("Moving data", stmt)
        left.add_cleanup_sql("Dropping archived table", f"DROP TABLE IF EXISTS {archive}")

        status = TaskStatus.INCOMPLETE if manual else TaskStatus.SUCCESS
        return StrategyResult(status=status, apply_sides=(Side.LEFT,), auto_apply=not manual,
                              strategy=self.kind)

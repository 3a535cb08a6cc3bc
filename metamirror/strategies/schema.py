from __future__ import annotations
import logging

from metamirror.core.workflow import CreateStrategy, Side, StrategyKind, TaskStatus
from metamirror.records.models import FILE_FORMAT, EnvironmentView
from metamirror.services import ddl
from metamirror.strategies.base import (
    Strategy, StrategyContext, StrategyResult, add_create_sql, add_partition_sql,
    prepare_right_definition, resolve_right_create,
)

log = logging.getLogger(__name__)


class SchemaOnlyStrategy(Strategy):
    """Schema on the RIGHT with translated locations; data is moved out of band."""

    kind = StrategyKind.SCHEMA_ONLY

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        cfg = ctx.config
        left_def = ctx.left.definition
        acid = ddl.is_acid(left_def)
        if acid and not cfg.migrate_acid.downgrade:
            # Transactional tables keep their managed layout; the target decides the location.
            definition = prepare_right_definition(ctx, external=False)
            ddl.remove_location(definition)
        else:
            definition = prepare_right_definition(ctx)
            if acid:
                ddl.upsert_tbl_property(definition, ddl.DOWNGRADED_FROM_ACID, "true")

        if resolve_right_create(ctx) == CreateStrategy.LEAVE:
            return StrategyResult(status=TaskStatus.SUCCESS, message="RIGHT table exists; left as is")

        status = TaskStatus.SUCCESS
        if not ddl.is_view(definition) and ddl.get_location(definition):
            if cfg.reset_to_default_location and not cfg.evaluate_partition_location:
                ddl.remove_location(definition)
            else:
                location = ctx.translator.translate_table_location(ctx.table)
                if location and cfg.copy_avro_schema_urls and ctx.left.statistics.get(FILE_FORMAT) == "AVRO":
                    ctx.cluster.copy_avro_schema(ctx.table, location)

        if not ctx.translator.translate_partition_locations(ctx.db, ctx.table):
            status = TaskStatus.INCOMPLETE

        add_create_sql(ctx, Side.RIGHT, ctx.right, ctx.table.name, ctx.right_db)
        add_partition_sql(ctx, Side.RIGHT, ctx.right, ctx.table.name)
        return StrategyResult(status=status, apply_sides=(Side.RIGHT,))


class DumpStrategy(Strategy):
    """Schema written out for the LEFT cluster only; nothing is executed."""

    kind = StrategyKind.DUMP

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        left = ctx.left
        definition = list(left.definition)
        if ctx.config.target_namespace and ctx.config.right.namespace and ddl.get_location(definition):
            # A RIGHT namespace means the dump is meant to be replayed there.
            original = ddl.get_location(definition)
            result = ctx.translator.translate(ctx.table.db_name, ctx.table.name, original, 1)
            ddl.update_location(definition, result.location)
            ctx.table.remapped = result.remapped
        env = EnvironmentView(name=ctx.table.name, side=Side.LEFT, definition=definition,
                              partitions=dict(left.partitions), create_strategy=CreateStrategy.CREATE)
        add_create_sql(ctx, Side.LEFT, env, ctx.table.name, ctx.right_db)
        add_partition_sql(ctx, Side.LEFT, env, ctx.table.name)
        return StrategyResult(status=TaskStatus.SUCCESS, auto_apply=False)


class LinkedStrategy(Strategy):
    """RIGHT table points at the LEFT data; nothing may purge it."""

    kind = StrategyKind.LINKED

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        if ddl.is_acid(ctx.left.definition):
            msg = "Can't LINK ACID tables. Use a data movement strategy for transactional tables."
            ctx.table.add_error(Side.RIGHT, msg)
            return StrategyResult.failed(msg)
        definition = prepare_right_definition(ctx, purge=False)
        ddl.remove_tbl_property(definition, ddl.EXTERNAL_PURGE)
        if resolve_right_create(ctx) == CreateStrategy.LEAVE:
            return StrategyResult(status=TaskStatus.SUCCESS)
        if ddl.get_location(definition):
            ctx.translator.translate_table_location(ctx.table)
        if ctx.left.partitions and ctx.config.evaluate_partition_location:
            # Linked partitions keep their LEFT locations.
            ctx.right.partitions = dict(ctx.left.partitions)
        add_create_sql(ctx, Side.RIGHT, ctx.right, ctx.table.name, ctx.right_db)
        add_partition_sql(ctx, Side.RIGHT, ctx.right, ctx.table.name)
        return StrategyResult(status=TaskStatus.SUCCESS, apply_sides=(Side.RIGHT,))


class ConvertLinkedStrategy(Strategy):
    """Replace a previously linked RIGHT table with one on RIGHT storage."""

    kind = StrategyKind.CONVERT_LINKED

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        if not ctx.right.exists:
            ctx.table.add_step("CONVERT_LINKED", "RIGHT table missing; building schema only")
            return ctx.registry.get(StrategyKind.SCHEMA_ONLY).execute(ctx)
        right_def = ctx.right.definition
        if ddl.get_tbl_property(right_def, ddl.EXTERNAL_PURGE) == "true":
            msg = "RIGHT table owns its data (purge enabled); it is not a linked table and can't be converted."
            ctx.table.add_error(Side.RIGHT, msg)
            return StrategyResult.failed(msg)
        prepare_right_definition(ctx)
        ctx.right.create_strategy = CreateStrategy.REPLACE
        ctx.translator.translate_table_location(ctx.table)
        ctx.translator.translate_partition_locations(ctx.db, ctx.table)
        add_create_sql(ctx, Side.RIGHT, ctx.right, ctx.table.name, ctx.right_db)
        add_partition_sql(ctx, Side.RIGHT, ctx.right, ctx.table.name)
        return StrategyResult(status=TaskStatus.SUCCESS, apply_sides=(Side.RIGHT,))

from __future__ import annotations
import logging

from metamirror.core.messages import MessageCode
from metamirror.core.workflow import Side, StrategyKind
from metamirror.services import ddl
from metamirror.strategies.base import Strategy, StrategyContext, StrategyResult, over_limit

log = logging.getLogger(__name__)


class HybridStrategy(Strategy):
    """Chooses EXPORT_IMPORT, SQL or an intermediate transfer per table."""

    kind = StrategyKind.HYBRID

    def choose(self, ctx: StrategyContext) -> StrategyKind:
        cfg = ctx.config
        table = ctx.table
        if ddl.is_acid(ctx.left.definition):
            if not cfg.migrate_acid.on:
                return StrategyKind.HYBRID
            return StrategyKind.ACID
        if ddl.is_partitioned(ctx.left.definition) and over_limit(
                ctx.partition_count, cfg.hybrid.export_import_partition_limit):
            table.add_issue(Side.LEFT, f"{MessageCode.EXPORT_IMPORT_PARTITION_LIMIT.desc} "
                                       f"({ctx.partition_count} > {cfg.hybrid.export_import_partition_limit})")
            if cfg.transfer.intermediate_storage or cfg.transfer.common_storage:
                return StrategyKind.ACID
            return StrategyKind.SQL
        return StrategyKind.EXPORT_IMPORT

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        chosen = self.choose(ctx)
        if chosen == StrategyKind.HYBRID:
            msg = MessageCode.ACID_NOT_ON.desc
            ctx.table.add_error(Side.LEFT, msg)
            ctx.codes.add_error(MessageCode.ACID_NOT_ON, f"{ctx.table.db_name}.{ctx.table.name}")
            return StrategyResult.failed(msg)
        ctx.table.add_step("HYBRID", chosen.value)
        result = ctx.registry.get(chosen).execute(ctx)
        if result.strategy is None:
            result.strategy = chosen
        return result

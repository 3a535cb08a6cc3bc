from __future__ import annotations
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Tuple

from metamirror.core.messages import CodeRegistry
from metamirror.core.workflow import CreateStrategy, Side, StrategyKind, TaskStatus
from metamirror.records.models import NOT_SET, DatabaseRecord, EnvironmentView, TableRecord
from metamirror.schemas.config import RunConfig
from metamirror.services import ddl
from metamirror.services.cluster import ClusterService
from metamirror.translator.translator import LocationTranslator

if TYPE_CHECKING:
    from metamirror.strategies.registry import StrategyRegistry


@dataclass
class StrategyContext:
    """Everything a strategy may read or write for one table."""

    run_key: str
    db: DatabaseRecord
    table: TableRecord
    config: RunConfig
    translator: LocationTranslator
    cluster: ClusterService
    codes: CodeRegistry
    registry: "StrategyRegistry"

    @property
    def left(self) -> EnvironmentView:
        return self.table.env(Side.LEFT)

    @property
    def right(self) -> EnvironmentView:
        return self.table.env(Side.RIGHT)

    @property
    def right_db(self) -> str:
        return self.config.resolved_db(self.table.db_name)

    @property
    def partition_count(self) -> int:
        return len(self.left.partitions)


@dataclass
class StrategyResult:
    status: TaskStatus
    message: str = ""
    # Sides whose SQL the orchestrator runs, in order.
    apply_sides: Tuple[Side, ...] = ()
    auto_apply: bool = True
    strategy: Optional[StrategyKind] = None

    @staticmethod
    def failed(message: str) -> "StrategyResult":
        return StrategyResult(status=TaskStatus.ERROR, message=message)


class Strategy:
    kind: StrategyKind

    def execute(self, ctx: StrategyContext) -> StrategyResult:
        raise NotImplementedError


def intermediate_location(config: RunConfig, run_key: str, database: str, table: str) -> Optional[str]:
    base = config.transfer.intermediate_storage or config.transfer.common_storage
    if not base:
        return None
    return f"{base}/{config.transfer.remote_working_directory}/{run_key}/{database}.db/{table}"


def transfer_name(config: RunConfig, table: str) -> str:
    return f"{config.transfer.transfer_prefix}{table}"


def shadow_name(config: RunConfig, table: str) -> str:
    return f"{config.transfer.shadow_prefix}{table}"


def archive_name(table: str) -> str:
    return f"{table}_archive"


def resolve_right_create(ctx: StrategyContext) -> CreateStrategy:
    """Decide what happens with the RIGHT table when one may already exist."""
    right = ctx.right
    if not right.exists:
        right.create_strategy = CreateStrategy.CREATE
    elif ctx.config.sync:
        right.create_strategy = CreateStrategy.REPLACE
    else:
        right.create_strategy = CreateStrategy.LEAVE
        right.add_issue("Schema exists already, no action. If you wish to rebuild the schema, "
                        "drop it first or use sync.")
    return right.create_strategy


def prepare_right_definition(ctx: StrategyContext, external: bool = True, purge: Optional[bool] = None) -> List[str]:
    """Copy the LEFT definition into the RIGHT view, converting managed tables to external."""
    definition = list(ctx.left.definition)
    if external and not ddl.is_view(definition):
        if purge is None:
            purge = not ctx.config.no_purge and ddl.is_managed(definition)
        ddl.make_external(definition, purge=purge)
    ctx.right.definition = definition
    if ctx.config.transfer_ownership and ctx.left.owner:
        ctx.right.owner = ctx.left.owner
    return definition


def add_create_sql(ctx: StrategyContext, side: Side, env: EnvironmentView, name: str, database: str) -> None:
    strategy = env.create_strategy
    if strategy in (CreateStrategy.NOTHING, CreateStrategy.LEAVE):
        return
    target = ctx.table.env(side)
    target.add_sql("Selecting DB", f"USE {database}")
    if strategy in (CreateStrategy.REPLACE, CreateStrategy.DROP):
        kind = "VIEW" if ddl.is_view(env.definition) else "TABLE"
        target.add_sql(f"Drop {kind}", f"DROP {kind} IF EXISTS {name}")
        if strategy == CreateStrategy.DROP:
            return
    definition = list(env.definition)
    ddl.change_table_name(definition, name)
    target.add_sql("Creating Table", ddl.create_statement(definition))
    if env.owner and ctx.config.transfer_ownership:
        target.add_sql("Setting table owner", f"ALTER TABLE {name} SET OWNER USER {env.owner}")


def add_partition_sql(ctx: StrategyContext, side: Side, env: EnvironmentView, name: str) -> None:
    """Partitions for a schema-level copy: explicit locations when known, otherwise a repair."""
    if not ddl.is_partitioned(env.definition) or env.create_strategy in (CreateStrategy.NOTHING, CreateStrategy.LEAVE):
        return
    target = ctx.table.env(side)
    if ctx.config.evaluate_partition_location and env.partitions:
        for spec in sorted(env.partitions):
            if env.partitions[spec] == NOT_SET:
                continue
            target.add_sql(f"Adding partition {spec}",
                           f"ALTER TABLE {name} ADD IF NOT EXISTS PARTITION ({ddl.partition_spec_to_sql(spec)}) "
                           f"LOCATION '{env.partitions[spec]}'")
    else:
        target.add_sql("Repairing partitions", f"MSCK REPAIR TABLE {name}")


def over_limit(count: int, limit: int) -> bool:
    return limit > 0 and count > limit

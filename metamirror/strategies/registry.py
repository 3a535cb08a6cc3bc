from dataclasses import dataclass
from typing import Dict
from metamirror.core.workflow import Side, StrategyKind
from metamirror.records.models import TableRecord
from metamirror.schemas.config import RunConfig
from metamirror.services import ddl
from metamirror.strategies.base import Strategy
from metamirror.strategies.export_import import ExportImportStrategy, HybridAcidDowngradeInplaceStrategy
from metamirror.strategies.hybrid import HybridStrategy
from metamirror.strategies.schema import (
    ConvertLinkedStrategy, DumpStrategy, LinkedStrategy, SchemaOnlyStrategy,
)
from metamirror.strategies.sql import (
    CommonStrategy, IntermediateStrategy, SqlAcidDowngradeInplaceStrategy, SqlStrategy,
)
from metamirror.strategies.storage import StorageMigrationStrategy


@dataclass
class StrategyRegistry:
    mapping: Dict[StrategyKind, Strategy]

    def get(self, kind: StrategyKind) -> Strategy:
        return self.mapping[kind]

    @staticmethod
    def default() -> "StrategyRegistry":
        return StrategyRegistry(mapping={
            StrategyKind.SCHEMA_ONLY: SchemaOnlyStrategy(),
            StrategyKind.DUMP: DumpStrategy(),
            StrategyKind.LINKED: LinkedStrategy(),
            StrategyKind.CONVERT_LINKED: ConvertLinkedStrategy(),
            StrategyKind.SQL: SqlStrategy(),
            StrategyKind.COMMON: CommonStrategy(),
            StrategyKind.EXPORT_IMPORT: ExportImportStrategy(),
            StrategyKind.ACID: IntermediateStrategy(),
            StrategyKind.HYBRID: HybridStrategy(),
            StrategyKind.STORAGE_MIGRATION: StorageMigrationStrategy(),
            StrategyKind.SQL_ACID_DOWNGRADE_INPLACE: SqlAcidDowngradeInplaceStrategy(),
            StrategyKind.HYBRID_ACID_DOWNGRADE_INPLACE: HybridAcidDowngradeInplaceStrategy(),
        })


def resolve_strategy(config: RunConfig, table: TableRecord) -> StrategyKind:
    """The strategy a table is actually dispatched to, decided once at transfer time."""
    strategy = config.strategy
    acid = ddl.is_acid(table.env(Side.LEFT).definition)
    in_place = config.migrate_acid.downgrade and config.migrate_acid.in_place
    if acid and in_place:
        if strategy == StrategyKind.HYBRID:
            return StrategyKind.HYBRID_ACID_DOWNGRADE_INPLACE
        if strategy == StrategyKind.SQL:
            return StrategyKind.SQL_ACID_DOWNGRADE_INPLACE
    return strategy

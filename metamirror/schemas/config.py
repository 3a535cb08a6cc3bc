from __future__ import annotations
import re
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from metamirror.core.workflow import DataFlow, StrategyKind


def _strip_trailing_slash(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    return value[:-1] if value.endswith("/") else value


class _Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ClusterConfig(_Snapshot):
    namespace: Optional[str] = Field(default=None, examples=["hdfs://HOME90"])
    legacy: bool = False
    disconnected: bool = False

    @field_validator("namespace")
    @classmethod
    def normalize_namespace(cls, value: Optional[str]) -> Optional[str]:
        return _strip_trailing_slash(value)


class WarehouseDirs(_Snapshot):
    external_directory: Optional[str] = None
    managed_directory: Optional[str] = None

    @field_validator("external_directory", "managed_directory")
    @classmethod
    def normalize_dirs(cls, value: Optional[str]) -> Optional[str]:
        return _strip_trailing_slash(value)

    @property
    def complete(self) -> bool:
        return bool(self.external_directory and self.managed_directory)


class WarehousePolicy(WarehouseDirs):
    """Warehouse roots on the target, with optional per-database overrides."""

    databases: Dict[str, WarehouseDirs] = Field(default_factory=dict)

    def for_database(self, database: str) -> WarehouseDirs:
        override = self.databases.get(database)
        if override and (override.external_directory or override.managed_directory):
            return override
        return WarehouseDirs(external_directory=self.external_directory,
                             managed_directory=self.managed_directory)


class StorageMigrationConfig(_Snapshot):
    distcp: bool = False
    data_flow: DataFlow = DataFlow.PULL


class TransferConfig(_Snapshot):
    transfer_prefix: str = "hms_mirror_transfer_"
    shadow_prefix: str = "hms_mirror_shadow_"
    storage_migration_postfix: str = "_storage_migration"
    export_base_dir_prefix: str = "/apps/hive/warehouse/export_"
    remote_working_directory: str = "hms_mirror_remote_working"
    intermediate_storage: Optional[str] = None
    common_storage: Optional[str] = None
    warehouse: WarehousePolicy = Field(default_factory=WarehousePolicy)
    storage_migration: StorageMigrationConfig = Field(default_factory=StorageMigrationConfig)

    @field_validator("intermediate_storage", "common_storage")
    @classmethod
    def normalize_storage(cls, value: Optional[str]) -> Optional[str]:
        return _strip_trailing_slash(value)


class TableFilter(_Snapshot):
    include_regex: Optional[str] = None
    exclude_regex: Optional[str] = None
    # MB, 0 disables
    size_limit: int = 0
    partition_limit: int = 0

    @field_validator("include_regex", "exclude_regex")
    @classmethod
    def check_regex(cls, value: Optional[str]) -> Optional[str]:
        if value:
            re.compile(value)
        return value or None

    @property
    def include_pattern(self) -> Optional[re.Pattern]:
        return re.compile(self.include_regex) if self.include_regex else None

    @property
    def exclude_pattern(self) -> Optional[re.Pattern]:
        return re.compile(self.exclude_regex) if self.exclude_regex else None


class MigrateAcidConfig(_Snapshot):
    on: bool = False
    only: bool = False
    partition_limit: int = 500
    downgrade: bool = False
    in_place: bool = False


class HybridConfig(_Snapshot):
    export_import_partition_limit: int = 100
    sql_partition_limit: int = 500


class OptimizationConfig(_Snapshot):
    sort_dynamic_partition_inserts: bool = False
    skip: bool = False
    skip_stats_collection: bool = False


class RunConfig(_Snapshot):
    """Immutable snapshot of everything a run needs to decide what to do."""

    strategy: StrategyKind = StrategyKind.SCHEMA_ONLY
    databases: List[str] = Field(default_factory=list)
    db_prefix: Optional[str] = None
    db_rename: Optional[str] = None

    left: ClusterConfig = Field(default_factory=ClusterConfig)
    right: ClusterConfig = Field(default_factory=ClusterConfig)

    # Insertion order is significant: the first matching prefix wins.
    global_location_map: Dict[str, str] = Field(default_factory=dict)
    reset_to_default_location: bool = False
    evaluate_partition_location: bool = False

    filter: TableFilter = Field(default_factory=TableFilter)
    transfer: TransferConfig = Field(default_factory=TransferConfig)
    migrate_acid: MigrateAcidConfig = Field(default_factory=MigrateAcidConfig)
    migrate_view: bool = False
    migrate_non_native: bool = False
    hybrid: HybridConfig = Field(default_factory=HybridConfig)
    optimization: OptimizationConfig = Field(default_factory=OptimizationConfig)

    execute: bool = False
    sync: bool = False
    transfer_ownership: bool = False
    read_only: bool = False
    no_purge: bool = False
    database_only: bool = False
    copy_avro_schema_urls: bool = False

    @model_validator(mode="after")
    def check_rename(self) -> "RunConfig":
        if self.db_rename and len(self.databases) > 1:
            raise ValueError("db_rename can only be used with a single database")
        return self

    @property
    def dry_run(self) -> bool:
        return not self.execute

    @property
    def distcp(self) -> bool:
        return self.transfer.storage_migration.distcp

    @property
    def data_flow(self) -> DataFlow:
        return self.transfer.storage_migration.data_flow

    @property
    def is_table_filtering(self) -> bool:
        return bool(self.filter.include_regex or self.filter.exclude_regex)

    @property
    def target_namespace(self) -> Optional[str]:
        if self.transfer.common_storage:
            return self.transfer.common_storage
        if self.right.namespace:
            return self.right.namespace
        # Storage migration stays on the LEFT cluster.
        if self.strategy == StrategyKind.STORAGE_MIGRATION:
            return self.left.namespace
        return None

    def resolved_db(self, database: str) -> str:
        if self.db_rename:
            return self.db_rename
        return f"{self.db_prefix}{database}" if self.db_prefix else database

    def needs_statistics(self, strategy: StrategyKind) -> bool:
        if self.optimization.skip_stats_collection:
            return False
        if strategy == StrategyKind.STORAGE_MIGRATION and self.distcp:
            return False
        return strategy in (StrategyKind.SQL, StrategyKind.HYBRID, StrategyKind.EXPORT_IMPORT,
                            StrategyKind.STORAGE_MIGRATION, StrategyKind.COMMON, StrategyKind.ACID)

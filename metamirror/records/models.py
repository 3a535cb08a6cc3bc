from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from metamirror.core.errors import InvalidPhaseTransition
from metamirror.core.messages import CodeRegistry
from metamirror.core.workflow import CreateStrategy, PhaseState, RunPhase, Side, StrategyKind
from metamirror.records.phase import check_transition

# Partition value used when only the partition name could be retrieved.
NOT_SET = "NOT_SET"

DIR_COUNT = "dir_count"
FILE_COUNT = "file_count"
DATA_SIZE = "data_size"
AVG_FILE_SIZE = "avg_file_size"
TABLE_EMPTY = "table_empty"
FILE_FORMAT = "file_format"

DB_NAME = "NAME"
DB_LOCATION = "LOCATION"
DB_MANAGED_LOCATION = "MANAGEDLOCATION"
DB_COMMENT = "COMMENT"
DB_OWNER_NAME = "OWNER_NAME"
DB_OWNER_TYPE = "OWNER_TYPE"
DB_PROPERTIES = "DBPROPERTIES"


@dataclass
class SqlStatement:
    description: str
    action: str

    def to_dict(self) -> dict:
        return {"description": self.description, "action": self.action}


@dataclass
class EnvironmentView:
    """One table as seen from one side of the migration."""

    name: str
    side: Side
    exists: bool = False
    definition: List[str] = field(default_factory=list)
    owner: Optional[str] = None
    partitions: Dict[str, str] = field(default_factory=dict)
    statistics: Dict[str, Any] = field(default_factory=dict)
    create_strategy: CreateStrategy = CreateStrategy.NOTHING
    sql: List[SqlStatement] = field(default_factory=list)
    cleanup_sql: List[SqlStatement] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def add_sql(self, description: str, action: str) -> None:
        self.sql.append(SqlStatement(description, action))

    def add_cleanup_sql(self, description: str, action: str) -> None:
        self.cleanup_sql.append(SqlStatement(description, action))

    def add_issue(self, message: str) -> None:
        self.issues.append(message)

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "side": self.side.value,
            "exists": self.exists,
            "definition": list(self.definition),
            "owner": self.owner,
            "partitions": dict(self.partitions),
            "statistics": dict(self.statistics),
            "create_strategy": self.create_strategy.value,
            "sql": [s.to_dict() for s in self.sql],
            "cleanup_sql": [s.to_dict() for s in self.cleanup_sql],
            "issues": list(self.issues),
            "errors": list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EnvironmentView":
        return cls(
            name=data["name"],
            side=Side(data["side"]),
            exists=data.get("exists", False),
            definition=list(data.get("definition", [])),
            owner=data.get("owner"),
            partitions=dict(data.get("partitions", {})),
            statistics=dict(data.get("statistics", {})),
            create_strategy=CreateStrategy(data.get("create_strategy", CreateStrategy.NOTHING.value)),
            sql=[SqlStatement(**s) for s in data.get("sql", [])],
            cleanup_sql=[SqlStatement(**s) for s in data.get("cleanup_sql", [])],
            issues=list(data.get("issues", [])),
            errors=list(data.get("errors", [])),
        )


@dataclass
class TableRecord:
    """Migration state of one table.

    The parent database is referenced by name only. Environment views are
    owned here and keyed by side.
    """

    name: str
    db_name: str
    strategy: Optional[StrategyKind] = None
    phase: PhaseState = PhaseState.INIT
    phase_count: int = 0
    steps: List[Tuple[str, str]] = field(default_factory=list)
    remove: bool = False
    remove_reason: Optional[str] = None
    remapped: bool = False
    stage_duration: int = 0
    stage_message: Optional[str] = None
    environments: Dict[Side, EnvironmentView] = field(default_factory=dict)

    def env(self, side: Side) -> EnvironmentView:
        view = self.environments.get(side)
        if view is None:
            view = EnvironmentView(name=self.name, side=side)
            self.environments[side] = view
        return view

    def has_env(self, side: Side) -> bool:
        return side in self.environments

    def add_step(self, name: str, detail: Any = "") -> None:
        self.steps.append((name, str(detail)))

    def add_issue(self, side: Side, message: str) -> None:
        self.env(side).add_issue(message)

    def add_error(self, side: Side, message: str) -> None:
        self.env(side).add_error(message)

    @property
    def has_errors(self) -> bool:
        return any(v.errors for v in self.environments.values())

    @property
    def has_issues(self) -> bool:
        return any(v.issues for v in self.environments.values())

    def advance(self, target: PhaseState) -> None:
        if self.remove:
            raise InvalidPhaseTransition(self.name, self.phase, target)
        check_transition(self.name, self.phase, target)
        self.phase = target

    def mark_removed(self, reason: str) -> None:
        self.remove = True
        self.remove_reason = reason

    def reset_for_retry(self) -> None:
        """Put an ERROR (or interrupted) table back to INIT so a rerun processes it again."""
        if self.phase in (PhaseState.INIT, PhaseState.PROCESSED, PhaseState.RETRY_SKIPPED_PAST_SUCCESS):
            return
        self.phase = PhaseState.INIT
        self.stage_message = None
        for side in (Side.TRANSFER, Side.SHADOW):
            self.environments.pop(side, None)
        for view in self.environments.values():
            view.errors.clear()
            view.sql.clear()
            view.cleanup_sql.clear()
        if Side.RIGHT in self.environments:
            self.environments[Side.RIGHT].partitions = {}

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "db_name": self.db_name,
            "strategy": self.strategy.value if self.strategy else None,
            "phase": self.phase.value,
            "phase_count": self.phase_count,
            "steps": [list(s) for s in self.steps],
            "remove": self.remove,
            "remove_reason": self.remove_reason,
            "remapped": self.remapped,
            "stage_duration": self.stage_duration,
            "stage_message": self.stage_message,
            # Staging views are not kept once the table is done.
            "environments": {
                side.value: view.to_dict()
                for side, view in self.environments.items() if side.persistent
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TableRecord":
        return cls(
            name=data["name"],
            db_name=data["db_name"],
            strategy=StrategyKind(data["strategy"]) if data.get("strategy") else None,
            phase=PhaseState(data.get("phase", PhaseState.INIT.value)),
            phase_count=data.get("phase_count", 0),
            steps=[tuple(s) for s in data.get("steps", [])],
            remove=data.get("remove", False),
            remove_reason=data.get("remove_reason"),
            remapped=data.get("remapped", False),
            stage_duration=data.get("stage_duration", 0),
            stage_message=data.get("stage_message"),
            environments={
                Side(side): EnvironmentView.from_dict(view)
                for side, view in data.get("environments", {}).items()
            },
        )


@dataclass
class DatabaseRecord:
    name: str
    definitions: Dict[Side, Dict[str, str]] = field(default_factory=dict)
    tables: Dict[str, TableRecord] = field(default_factory=dict)
    issues: Dict[Side, List[str]] = field(default_factory=dict)
    sql: Dict[Side, List[SqlStatement]] = field(default_factory=dict)

    def definition(self, side: Side) -> Optional[Dict[str, str]]:
        return self.definitions.get(side)

    def set_definition(self, side: Side, definition: Optional[Dict[str, str]]) -> None:
        if definition is None:
            self.definitions.pop(side, None)
        else:
            self.definitions[side] = dict(definition)

    def add_table(self, table: TableRecord) -> TableRecord:
        return self.tables.setdefault(table.name, table)

    def table(self, name: str) -> Optional[TableRecord]:
        return self.tables.get(name)

    @property
    def active_tables(self) -> List[TableRecord]:
        return [t for t in self.tables.values() if not t.remove]

    def add_issue(self, side: Side, message: str) -> None:
        self.issues.setdefault(side, []).append(message)

    def add_sql(self, side: Side, description: str, action: str) -> None:
        self.sql.setdefault(side, []).append(SqlStatement(description, action))

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "definitions": {s.value: dict(d) for s, d in self.definitions.items()},
            "tables": {n: t.to_dict() for n, t in self.tables.items()},
            "issues": {s.value: list(i) for s, i in self.issues.items()},
            "sql": {s.value: [q.to_dict() for q in l] for s, l in self.sql.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DatabaseRecord":
        return cls(
            name=data["name"],
            definitions={Side(s): dict(d) for s, d in data.get("definitions", {}).items()},
            tables={n: TableRecord.from_dict(t) for n, t in data.get("tables", {}).items()},
            issues={Side(s): list(i) for s, i in data.get("issues", {}).items()},
            sql={Side(s): [SqlStatement(**q) for q in l] for s, l in data.get("sql", {}).items()},
        )


@dataclass
class RunRecord:
    """Root of everything a run produces; this is what gets checkpointed."""

    run_key: str
    databases: Dict[str, DatabaseRecord] = field(default_factory=dict)
    phase: RunPhase = RunPhase.INIT
    codes: CodeRegistry = field(default_factory=CodeRegistry)
    error_count: int = 0
    # database -> side -> target -> sources
    copy_plans: Dict[str, Dict[str, Dict[str, List[str]]]] = field(default_factory=dict)

    def database(self, name: str) -> DatabaseRecord:
        return self.databases.setdefault(name, DatabaseRecord(name=name))

    def tables(self) -> List[TableRecord]:
        return [t for db in self.databases.values() for t in db.tables.values()]

    def to_dict(self) -> dict:
        return {
            "run_key": self.run_key,
            "phase": self.phase.value,
            "error_count": self.error_count,
            "codes": self.codes.to_dict(),
            "databases": {n: d.to_dict() for n, d in self.databases.items()},
            "copy_plans": self.copy_plans,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RunRecord":
        return cls(
            run_key=data["run_key"],
            phase=RunPhase(data.get("phase", RunPhase.INIT.value)),
            error_count=data.get("error_count", 0),
            codes=CodeRegistry.from_dict(data.get("codes", {})),
            databases={n: DatabaseRecord.from_dict(d) for n, d in data.get("databases", {}).items()},
            copy_plans=data.get("copy_plans", {}),
        )

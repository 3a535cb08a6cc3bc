from dataclasses import dataclass
from enum import Enum

class Side(str, Enum):
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    TRANSFER = "TRANSFER"
    SHADOW = "SHADOW"

    @property
    def persistent(self) -> bool:
        return self in (Side.LEFT, Side.RIGHT)

class PhaseState(str, Enum):
    INIT = "INIT"
    STARTED = "STARTED"
    CALCULATING_SQL = "CALCULATING_SQL"
    CALCULATED_SQL = "CALCULATED_SQL"
    CALCULATED_SQL_WARNING = "CALCULATED_SQL_WARNING"
    APPLYING_SQL = "APPLYING_SQL"
    PROCESSED = "PROCESSED"
    ERROR = "ERROR"
    RETRY_SKIPPED_PAST_SUCCESS = "RETRY_SKIPPED_PAST_SUCCESS"

class StrategyKind(str, Enum):
    SCHEMA_ONLY = "SCHEMA_ONLY"
    DUMP = "DUMP"
    LINKED = "LINKED"
    CONVERT_LINKED = "CONVERT_LINKED"
    SQL = "SQL"
    COMMON = "COMMON"
    EXPORT_IMPORT = "EXPORT_IMPORT"
    ACID = "ACID"
    HYBRID = "HYBRID"
    STORAGE_MIGRATION = "STORAGE_MIGRATION"
    SQL_ACID_DOWNGRADE_INPLACE = "SQL_ACID_DOWNGRADE_INPLACE"
    HYBRID_ACID_DOWNGRADE_INPLACE = "HYBRID_ACID_DOWNGRADE_INPLACE"

class DataFlow(str, Enum):
    PULL = "PULL"
    PUSH = "PUSH"

class CreateStrategy(str, Enum):
    NOTHING = "NOTHING"
    CREATE = "CREATE"
    DROP = "DROP"
    REPLACE = "REPLACE"
    LEAVE = "LEAVE"
    AMEND_PARTS = "AMEND_PARTS"

class TaskStatus(str, Enum):
    SUCCESS = "SUCCESS"
    INCOMPLETE = "INCOMPLETE"
    ERROR = "ERROR"
    FATAL = "FATAL"

class RunPhase(str, Enum):
    INIT = "INIT"
    COLLECTING = "COLLECTING"
    CREATING_DATABASES = "CREATING_DATABASES"
    LOADING_TABLE_METADATA = "LOADING_TABLE_METADATA"
    TRANSFERRING = "TRANSFERRING"
    BUILDING_COPY_PLANS = "BUILDING_COPY_PLANS"
    DONE = "DONE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

@dataclass(frozen=True)
class TaskResult:
    subject: str
    status: TaskStatus
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (TaskStatus.SUCCESS, TaskStatus.INCOMPLETE)

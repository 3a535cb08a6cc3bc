"""In-process fakes for the cluster collaborators, plus table DDL builders."""
import threading
import time
from typing import Dict, List, Optional, Sequence, Tuple

from metamirror.core.workflow import Side
from metamirror.schemas.config import RunConfig
from metamirror.services.interfaces import PART_LOCATIONS, CommandResult

PART_LOCATIONS_SQL = "SELECT PART_NAME, LOCATION FROM PART_LOCATIONS WHERE DB = ? AND TBL = ?"


def make_config(**overrides) -> RunConfig:
    data = {
        "databases": ["db1"],
        "left": {"namespace": "hdfs://left"},
        "right": {"namespace": "ofs://OHOME90"},
        "execute": True,
    }
    data.update(overrides)
    return RunConfig.model_validate(data)


def table_ddl(name: str, location: Optional[str] = None, external: bool = False, acid: bool = False,
              partitioned_by: Sequence[str] = (), props: Optional[Dict[str, str]] = None,
              stored_by: Optional[str] = None) -> List[str]:
    lines = [f"CREATE {'EXTERNAL ' if external else ''}TABLE `{name}`(", "  `id` int,", "  `value` string)"]
    if partitioned_by:
        lines.append("PARTITIONED BY (")
        for i, col in enumerate(partitioned_by):
            lines.append(f"  `{col}` string{')' if i == len(partitioned_by) - 1 else ','}")
    if stored_by:
        lines += ["STORED BY", f"  '{stored_by}'"]
    else:
        lines += [
            "ROW FORMAT SERDE",
            "  'org.apache.hadoop.hive.ql.io.orc.OrcSerde'",
            "STORED AS INPUTFORMAT",
            "  'org.apache.hadoop.hive.ql.io.orc.OrcInputFormat'",
            "OUTPUTFORMAT",
            "  'org.apache.hadoop.hive.ql.io.orc.OrcOutputFormat'",
        ]
    if location:
        lines += ["LOCATION", f"  '{location}'"]
    properties = dict(props or {})
    if acid:
        properties["transactional"] = "true"
    if properties:
        items = list(properties.items())
        lines.append("TBLPROPERTIES (")
        for i, (k, v) in enumerate(items):
            lines.append(f"  '{k}'='{v}'{')' if i == len(items) - 1 else ','}")
    return lines


def view_ddl(name: str, source: str = "t1") -> List[str]:
    return [f"CREATE VIEW `{name}` AS SELECT * FROM {source}"]


class FakeCluster:
    """Metastore contents of one side plus a log of every statement seen."""

    def __init__(self, side: Side, events: Optional[list] = None):
        self.side = side
        self.databases: Dict[str, Tuple] = {}
        self.tables: Dict[str, Dict[str, List[str]]] = {}
        self.partitions: Dict[Tuple[str, str], Dict[str, str]] = {}
        self.owners: Dict[Tuple[str, str], str] = {}
        self.executed: List[str] = []
        self.events = events if events is not None else []
        # substring -> seconds to sleep / exception to raise
        self.delays: Dict[str, float] = {}
        self.failures: Dict[str, Exception] = {}
        self._lock = threading.Lock()

    def add_database(self, name: str, location: str, managed: Optional[str] = None, comment: str = "") -> None:
        self.databases[name] = (name, comment, location, managed or "", "hive", "USER", "")
        self.tables.setdefault(name, {})

    def add_table(self, database: str, name: str, definition: List[str],
                  partitions: Optional[Dict[str, str]] = None) -> None:
        self.tables.setdefault(database, {})[name] = definition
        if partitions is not None:
            self.partitions[(database, name)] = partitions

    def log(self, kind: str, detail: str) -> None:
        with self._lock:
            self.events.append((self.side, kind, detail))

    def _maybe_fail(self, sql: str) -> None:
        for marker, seconds in self.delays.items():
            if marker in sql:
                time.sleep(seconds)
        for marker, error in self.failures.items():
            if marker in sql:
                raise error


class FakeConnection:
    def __init__(self, cluster: FakeCluster):
        self.cluster = cluster
        self.current_db: Optional[str] = None

    def execute(self, sql: str) -> None:
        self.cluster._maybe_fail(sql)
        if sql.startswith("USE "):
            self.current_db = sql[4:].strip()
            return
        with self.cluster._lock:
            self.cluster.executed.append(sql)
        self.cluster.log("execute", sql)

    def query(self, sql: str, params: Optional[Sequence] = None) -> List[Tuple]:
        cluster = self.cluster
        if sql in ("SHOW TABLES", "SHOW VIEWS"):
            cluster.log("list_start", self.current_db)
            cluster._maybe_fail(f"{sql} {self.current_db}")
            tables = cluster.tables.get(self.current_db, {})
            if sql == "SHOW VIEWS":
                rows = [(n,) for n, d in tables.items() if d and d[0].startswith("CREATE VIEW")]
            else:
                rows = [(n,) for n in tables]
            cluster.log("list_end", self.current_db)
            return rows
        cluster._maybe_fail(sql)
        if sql.startswith("DESCRIBE DATABASE EXTENDED "):
            name = sql.split()[-1]
            if name not in cluster.databases:
                raise RuntimeError(f"Database {name} does not exist")
            return [cluster.databases[name]]
        if sql.startswith("SHOW CREATE TABLE "):
            database, name = sql.split()[-1].split(".", 1)
            definition = cluster.tables.get(database, {}).get(name)
            if definition is None:
                raise RuntimeError(f"Table not found {database}.{name}")
            return [(line,) for line in definition]
        if sql.startswith("SHOW PARTITIONS "):
            database, name = sql.split()[-1].split(".", 1)
            return [(spec,) for spec in cluster.partitions.get((database, name), {})]
        if sql.startswith("SHOW TABLE EXTENDED IN "):
            parts = sql.split()
            database, name = parts[4], parts[6].strip("'")
            owner = cluster.owners.get((database, name))
            return [(f"owner:{owner}",)] if owner else []
        if sql == PART_LOCATIONS_SQL:
            database, name = params
            return list(cluster.partitions.get((database, name), {}).items())
        raise AssertionError(f"Unexpected query: {sql}")


class FakeConnectionProvider:
    """Hands out connections for the sides it knows; None for the others."""

    def __init__(self, left: Optional[FakeCluster], right: Optional[FakeCluster] = None):
        self.clusters = {Side.LEFT: left, Side.RIGHT: right}
        self.borrowed = 0
        self.released = 0
        self._lock = threading.Lock()

    def borrow(self, side: Side, direct: bool = False) -> Optional[FakeConnection]:
        cluster = self.clusters.get(side)
        if cluster is None:
            return None
        with self._lock:
            self.borrowed += 1
        return FakeConnection(cluster)

    def release(self, connection: FakeConnection) -> None:
        with self._lock:
            self.released += 1


class FakeQueries:
    def __init__(self, queries: Optional[Dict[str, str]] = None):
        self.queries = queries if queries is not None else {PART_LOCATIONS: PART_LOCATIONS_SQL}

    def get(self, side: Side, name: str) -> Optional[str]:
        return self.queries.get(name)


class FakeShellSession:
    def __init__(self, results: Dict[str, CommandResult], commands: List[str]):
        self.results = results
        self.commands = commands

    def run(self, command: str) -> CommandResult:
        self.commands.append(command)
        return self.results.get(command, CommandResult(records=[], error=True))


class FakeShellPool:
    def __init__(self, results: Optional[Dict[str, CommandResult]] = None):
        self.results = results or {}
        self.commands: List[str] = []
        self.outstanding = 0

    def borrow(self) -> FakeShellSession:
        self.outstanding += 1
        return FakeShellSession(self.results, self.commands)

    def return_session(self, session: FakeShellSession) -> None:
        self.outstanding -= 1

from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from metamirror.core.errors import ConnectionUnavailableError
from metamirror.core.messages import CodeRegistry, MessageCode
from metamirror.core.workflow import Side, StrategyKind
from metamirror.records.models import (
    AVG_FILE_SIZE, DATA_SIZE, DB_COMMENT, DB_LOCATION, DB_MANAGED_LOCATION, DB_NAME, DB_OWNER_NAME,
    DB_OWNER_TYPE, DB_PROPERTIES, DIR_COUNT, FILE_COUNT, FILE_FORMAT, NOT_SET, TABLE_EMPTY,
    DatabaseRecord, SqlStatement, TableRecord,
)
from metamirror.schemas.config import RunConfig
from metamirror.services import ddl
from metamirror.services.filters import name_filter_reason
from metamirror.services.interfaces import (
    PART_LOCATIONS, Connection, ConnectionProvider, QueryDefinitions, ShellSessionPool,
)

log = logging.getLogger(__name__)

_MISSING_MARKERS = ("does not exist", "Table not found", "NoSuchObjectException")
AVRO_SCHEMA_URL = "avro.schema.url"


def _is_missing(error: Exception) -> bool:
    message = str(error)
    return any(marker in message for marker in _MISSING_MARKERS)


class ClusterService:
    """Reads metadata from, and runs SQL against, the LEFT and RIGHT clusters."""

    def __init__(self, config: RunConfig, connections: ConnectionProvider,
                 queries: Optional[QueryDefinitions] = None, shells: Optional[ShellSessionPool] = None):
        self.config = config
        self.connections = connections
        self.queries = queries
        self.shells = shells
        self.codes: Optional[CodeRegistry] = None

    @contextmanager
    def borrow(self, side: Side, direct: bool = False) -> Iterator[Optional[Connection]]:
        conn = self.connections.borrow(side, direct)
        try:
            yield conn
        finally:
            if conn is not None:
                self.connections.release(conn)

    def _require(self, conn: Optional[Connection], side: Side) -> Connection:
        if conn is None:
            raise ConnectionUnavailableError(f"No {side.value} connection available")
        return conn

    def right_optional(self, side: Side) -> bool:
        """A missing RIGHT connection means dry-run or disconnected mode."""
        return side == Side.RIGHT and (self.config.right.disconnected or self.config.dry_run)

    def db_name_on(self, side: Side, database: str) -> str:
        return database if side == Side.LEFT else self.config.resolved_db(database)

    def get_database(self, side: Side, database: str,
                     on_issue: Optional[Callable[[str], None]] = None) -> Optional[Dict[str, str]]:
        name = self.db_name_on(side, database)
        with self.borrow(side) as conn:
            if conn is None:
                if self.right_optional(side):
                    if on_issue is not None:
                        on_issue(f"No RIGHT connection (dry-run or disconnected); {name} treated as absent")
                    return None
                raise ConnectionUnavailableError(f"No {side.value} connection available to describe {name}")
            try:
                rows = conn.query(f"DESCRIBE DATABASE EXTENDED {name}")
            except Exception as e:
                if _is_missing(e):
                    return None
                raise
        if not rows:
            return None
        row = [("" if v is None else str(v)) for v in rows[0]]
        if len(row) >= 7:
            keys = [DB_NAME, DB_COMMENT, DB_LOCATION, DB_MANAGED_LOCATION, DB_OWNER_NAME, DB_OWNER_TYPE, DB_PROPERTIES]
        else:
            keys = [DB_NAME, DB_COMMENT, DB_LOCATION, DB_OWNER_NAME, DB_OWNER_TYPE, DB_PROPERTIES]
        return {k: v for k, v in zip(keys, row) if v}

    def _show_statements(self, side: Side) -> List[str]:
        cluster = self.config.left if side == Side.LEFT else self.config.right
        if cluster.legacy or not self.config.migrate_view:
            return ["SHOW TABLES"]
        shows = ["SHOW VIEWS"]
        if self.config.strategy == StrategyKind.DUMP:
            shows.append("SHOW TABLES")
        return shows

    def list_tables(self, side: Side, database: str) -> List[str]:
        name = self.db_name_on(side, database)
        names: List[str] = []
        with self.borrow(side) as conn:
            if conn is None and self.right_optional(side):
                return names
            conn = self._require(conn, side)
            conn.execute(f"USE {name}")
            for show in self._show_statements(side):
                for row in conn.query(show):
                    if row and row[0] not in names:
                        names.append(row[0])
        return names

    def get_tables(self, db_record: DatabaseRecord) -> None:
        """Enumerate LEFT tables into the record; filtered names stay with remove=True."""
        log.info("%s: Loading tables for database", db_record.name)
        for name in self.list_tables(Side.LEFT, db_record.name):
            table = db_record.add_table(TableRecord(name=name, db_name=db_record.name))
            reason = name_filter_reason(self.config, name)
            if reason:
                table.mark_removed(reason)
                log.info("%s.%s was NOT added to the processing list: %s", db_record.name, name, reason)
            else:
                table.stage_message = "Added to evaluation inventory"

        if self.config.sync and not self.config.right.disconnected:
            try:
                right_names = self.list_tables(Side.RIGHT, db_record.name)
            except Exception as e:
                # A RIGHT database that is not there yet is expected.
                if not _is_missing(e):
                    raise
                right_names = []
            for name in right_names:
                if name in db_record.tables:
                    continue
                table = db_record.add_table(TableRecord(name=name, db_name=db_record.name))
                table.env(Side.RIGHT).exists = True
                reason = name_filter_reason(self.config, name)
                if reason:
                    table.mark_removed(reason)

    def load_table_definition(self, table: TableRecord, side: Side) -> bool:
        env = table.env(side)
        database = self.db_name_on(side, table.db_name)
        with self.borrow(side) as conn:
            if conn is None:
                if self.right_optional(side):
                    table.add_issue(side, "No RIGHT connection (dry-run or disconnected); RIGHT schema not checked")
                    return False
                raise ConnectionUnavailableError(f"No {side.value} connection to load {database}.{table.name}")
            try:
                rows = conn.query(f"SHOW CREATE TABLE {database}.{table.name}")
            except Exception as e:
                if _is_missing(e):
                    env.exists = False
                    table.add_step(side.value, "No Schema")
                    return False
                raise
            env.definition = [row[0] for row in rows]
            env.exists = bool(env.definition)
            if side == Side.LEFT and self.config.transfer_ownership:
                env.owner = self._load_owner(conn, database, table.name)
        table.add_step(side.value, "Fetched Schema")
        return env.exists

    def _load_owner(self, conn: Connection, database: str, name: str) -> Optional[str]:
        try:
            rows = conn.query(f"SHOW TABLE EXTENDED IN {database} LIKE '{name}'")
        except Exception as e:
            log.warning("Unable to load owner for %s.%s: %s", database, name, e)
            return None
        for row in rows:
            if row and str(row[0]).startswith("owner"):
                parts = str(row[0]).split(":", 1)
                if len(parts) == 2:
                    return parts[1].strip()
        return None

    def load_stats(self, table: TableRecord, side: Side = Side.LEFT) -> None:
        env = table.env(side)
        fmt = ddl.file_format(env.definition)
        if fmt:
            env.statistics[FILE_FORMAT] = fmt
        location = ddl.get_location(env.definition)
        if not location or self.shells is None:
            return
        session = self.shells.borrow()
        try:
            result = session.run(f"count {location}")
        finally:
            self.shells.return_session(session)
        if result.error or len(result.records) != 1:
            log.warning("Unable to count %s for %s.%s", location, table.db_name, table.name)
            return
        try:
            fields = result.records[0].split()
            dirs, files, size = int(fields[0]), int(fields[1]), int(fields[2])
        except (ValueError, IndexError):
            log.warning("Unreadable count output for %s.%s: %r", table.db_name, table.name, result.records[0])
            return
        env.statistics[DIR_COUNT] = dirs
        env.statistics[FILE_COUNT] = files
        env.statistics[DATA_SIZE] = size
        if files == 0:
            env.statistics[TABLE_EMPTY] = True
        else:
            env.statistics[AVG_FILE_SIZE] = size / files
            env.statistics[TABLE_EMPTY] = False

    def use_direct_partitions(self) -> bool:
        cfg = self.config
        return cfg.evaluate_partition_location or (
            cfg.strategy == StrategyKind.STORAGE_MIGRATION and cfg.distcp)

    def load_partitions(self, table: TableRecord, side: Side = Side.LEFT) -> None:
        env = table.env(side)
        if not ddl.is_partitioned(env.definition):
            return
        database = self.db_name_on(side, table.db_name)
        query = self.queries.get(side, PART_LOCATIONS) if self.queries is not None else None
        if self.use_direct_partitions() and query:
            with self.borrow(side, direct=True) as conn:
                conn = self._require(conn, side)
                rows = conn.query(query, (database, table.name))
            env.partitions = {row[0]: row[1] for row in rows}
            table.add_step(side.value, f"Loaded {len(env.partitions)} partitions (direct)")
            return
        with self.borrow(side) as conn:
            conn = self._require(conn, side)
            rows = conn.query(f"SHOW PARTITIONS {database}.{table.name}")
        env.partitions = {row[0]: NOT_SET for row in rows}
        table.add_step(side.value, f"Loaded {len(env.partitions)} partitions")

    def copy_avro_schema(self, table: TableRecord, target_location: str) -> bool:
        """Copy the avro.schema.url file of an AVRO table next to its new location."""
        left = table.env(Side.LEFT)
        schema_url = ddl.get_tbl_property(left.definition, AVRO_SCHEMA_URL)
        if not schema_url or self.shells is None:
            return False
        file_name = schema_url.rsplit("/", 1)[-1]
        new_url = f"{target_location}/{file_name}" if not target_location.endswith("/") else target_location + file_name
        session = self.shells.borrow()
        try:
            result = session.run(f"cp -f {schema_url} {new_url}")
        finally:
            self.shells.return_session(session)
        if result.error:
            table.add_issue(Side.RIGHT, f"Unable to copy AVRO schema {schema_url} to {new_url}")
            return False
        right = table.env(Side.RIGHT)
        if right.definition:
            ddl.upsert_tbl_property(right.definition, AVRO_SCHEMA_URL, new_url)
        table.add_step("AVRO", f"Schema copied to {new_url}")
        return True

    def _run(self, statements: List[SqlStatement], side: Side, subject: str, on_step, on_issue, on_error) -> bool:
        if not statements:
            return True
        with self.borrow(side) as conn:
            if conn is None:
                if side == Side.RIGHT and self.config.right.disconnected:
                    on_issue("Running in 'disconnected' mode. NO RIGHT operations will be done. "
                             "The scripts will need to be run 'manually'.")
                    if self.codes is not None:
                        self.codes.add_warning(MessageCode.RIGHT_DISCONNECTED, subject)
                    return True
                if self.config.dry_run:
                    for stmt in statements:
                        on_step(f"Sql Run SKIPPED (DRY-RUN) for: {stmt.description}")
                    return True
                on_error(f"No {side.value} connection available to run SQL")
                return False
            for stmt in statements:
                log.debug("%s:SQL:%s:%s", side.value, stmt.description, stmt.action)
                if self.config.dry_run:
                    on_step(f"Sql Run SKIPPED (DRY-RUN) for: {stmt.description}")
                    continue
                try:
                    conn.execute(stmt.action)
                except Exception as e:
                    log.error("%s: %s failed: %s", side.value, stmt.description, e)
                    on_error(f"{stmt.description}: {e}")
                    return False
                on_step(f"Sql Run Complete for: {stmt.description}")
        return True

    def run_table_sql(self, table: TableRecord, side: Side) -> bool:
        env = table.env(side)
        table.stage_message = f"Executing {side.value} SQL"
        return self._run(
            env.sql, side, f"{table.db_name}.{table.name}",
            on_step=lambda msg: table.add_step(side.value, msg),
            on_issue=lambda msg: table.add_issue(side, msg),
            on_error=lambda msg: table.add_error(side, msg),
        )

    def run_database_sql(self, db_record: DatabaseRecord, side: Side) -> bool:
        errors: List[str] = []
        ok = self._run(
            db_record.sql.get(side, []), side, db_record.name,
            on_step=lambda msg: log.info("%s:%s: %s", db_record.name, side.value, msg),
            on_issue=lambda msg: db_record.add_issue(side, msg),
            on_error=errors.append,
        )
        for message in errors:
            db_record.add_issue(side, message)
        return ok

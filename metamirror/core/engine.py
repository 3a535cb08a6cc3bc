from __future__ import annotations
import logging
import time
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from metamirror.checkpoint.stores import CheckpointStore
from metamirror.copyplan.builder import build_all_plans, plan_instructions
from metamirror.copyplan.writer import write_copy_plan
from metamirror.core.config import settings
from metamirror.core.errors import PhaseFailedError, TranslationError
from metamirror.core.messages import MessageCode
from metamirror.core.pools import CancelToken, PhasePool, phase_failed
from metamirror.core.workflow import PhaseState, RunPhase, Side, StrategyKind, TaskResult, TaskStatus
from metamirror.records.models import DatabaseRecord, RunRecord, TableRecord
from metamirror.records.phase import TERMINAL, is_success
from metamirror.schemas.config import RunConfig
from metamirror.services import ddl
from metamirror.services.cluster import ClusterService
from metamirror.services.database import build_database_statements
from metamirror.services.filters import check_partition_filter, check_size_filter, check_table_filter
from metamirror.strategies.base import StrategyContext, StrategyResult, intermediate_location
from metamirror.strategies.registry import StrategyRegistry, resolve_strategy
from metamirror.translator.history import LocationHistory
from metamirror.translator.translator import LocationTranslator

log = logging.getLogger(__name__)


def new_run_key() -> str:
    return f"{datetime.utcnow().strftime('%Y-%m-%d_%H-%M-%S')}_{uuid.uuid4().hex[:8]}"


class MirrorEngine:
    """Drives one run: collect, create databases, load table metadata, transfer, plan copies.

    Every phase is a join-all barrier over a bounded pool; nothing from the
    next phase is scheduled before every task of the current one is done.
    """

    def __init__(self, config: RunConfig, cluster: ClusterService, run_key: Optional[str] = None,
                 run: Optional[RunRecord] = None, store: Optional[CheckpointStore] = None,
                 registry: Optional[StrategyRegistry] = None, output_dir: Optional[str] = None,
                 database_workers: Optional[int] = None, metadata_workers: Optional[int] = None,
                 transfer_workers: Optional[int] = None):
        self.config = config
        self.cluster = cluster
        self.run_key = run_key or (run.run_key if run else new_run_key())
        self.record = run if run is not None else RunRecord(run_key=self.run_key)
        self.store = store
        self.registry = registry or StrategyRegistry.default()
        self.output_dir = output_dir
        self.database_workers = database_workers or settings.database_worker_count
        self.metadata_workers = metadata_workers or settings.metadata_worker_count
        self.transfer_workers = transfer_workers or settings.transfer_worker_count
        self.history = LocationHistory()
        self.translator = LocationTranslator(config, self.history, self.record.codes)
        self.cluster.codes = self.record.codes
        self.cancel_token = CancelToken()

    def _extra(self, table: str = "-") -> dict:
        return {"run_key": self.run_key, "table": table}

    def _set_phase(self, phase: RunPhase) -> None:
        self.record.phase = phase
        log.info("Entering phase %s", phase.value, extra=self._extra())

    def checkpoint(self) -> None:
        if self.store is not None:
            self.store.save(self.run_key, self.record)

    def cancel(self) -> None:
        """Stop scheduling further phases. Running tasks finish normally."""
        self.cancel_token.cancel()

    def _fail(self, phase: RunPhase, code: MessageCode, message: Optional[str] = None) -> PhaseFailedError:
        self.record.codes.add_error(code, message or "")
        return PhaseFailedError(phase, code, message)

    def _run_pool(self, name: str, workers: int, tasks: List[tuple]) -> List[TaskResult]:
        with PhasePool(name, workers) as pool:
            for subject, fn in tasks:
                pool.submit(subject, fn)
            return pool.join()

    # -- collect --------------------------------------------------------

    def collect(self) -> None:
        self._set_phase(RunPhase.COLLECTING)
        missing: List[str] = []
        unreadable: List[str] = []
        tasks = []
        for database in self.config.databases:
            db_record = self.record.database(database)
            side = Side.LEFT
            try:
                left = self.cluster.get_database(Side.LEFT, database)
                if left is not None and self.config.strategy != StrategyKind.DUMP:
                    side = Side.RIGHT
                    right = self.cluster.get_database(
                        Side.RIGHT, database, on_issue=lambda msg, db=db_record: db.add_issue(Side.RIGHT, msg))
                else:
                    right = None
            except Exception as e:
                log.exception("Failed to describe database %s", database, extra=self._extra())
                db_record.add_issue(side, f"Failed to describe database: {e}")
                unreadable.append(database)
                continue
            if left is None:
                db_record.add_issue(Side.LEFT, "DB doesn't exist. Check permissions for user running process")
                self.record.codes.add_error(MessageCode.DB_DOESNT_EXIST, database)
                log.error("Database %s does not exist on LEFT", database, extra=self._extra())
                missing.append(database)
                continue
            db_record.set_definition(Side.LEFT, left)
            if self.config.strategy != StrategyKind.DUMP:
                db_record.set_definition(Side.RIGHT, right)
            tasks.append((database, self._tables_task(db_record)))

        results = self._run_pool("database", self.database_workers, tasks)
        if missing:
            raise self._fail(RunPhase.COLLECTING, MessageCode.DB_DOESNT_EXIST, ", ".join(missing))
        if unreadable or phase_failed(results):
            raise self._fail(RunPhase.COLLECTING, MessageCode.COLLECTING_TABLES, ", ".join(unreadable) or None)

    def _tables_task(self, db_record: DatabaseRecord) -> Callable[[], TaskResult]:
        def task() -> TaskResult:
            try:
                self.cluster.get_tables(db_record)
            except Exception as e:
                log.exception("Failed to collect tables for %s", db_record.name, extra=self._extra())
                db_record.add_issue(Side.LEFT, f"Failed to collect tables: {e}")
                return TaskResult(db_record.name, TaskStatus.ERROR, str(e))
            return TaskResult(db_record.name, TaskStatus.SUCCESS)
        return task

    # -- databases ------------------------------------------------------

    def create_databases(self) -> None:
        self._set_phase(RunPhase.CREATING_DATABASES)
        results = self._run_pool("database", 1, [("databases", self._create_databases_task)])
        if phase_failed(results):
            raise self._fail(RunPhase.CREATING_DATABASES, MessageCode.DATABASE_CREATION)

    def _create_databases_task(self) -> TaskResult:
        ok = True
        for db_record in self.record.databases.values():
            if db_record.definition(Side.LEFT) is None:
                continue
            try:
                ok = build_database_statements(self.config, self.translator, db_record) and ok
            except Exception as e:
                log.exception("Building database DDL for %s failed", db_record.name, extra=self._extra())
                db_record.add_issue(Side.RIGHT, str(e))
                ok = False
                continue
            # DUMP only writes out the LEFT script.
            if self.config.strategy == StrategyKind.DUMP:
                continue
            for side in (Side.LEFT, Side.RIGHT):
                if not self.cluster.run_database_sql(db_record, side):
                    ok = False
        return TaskResult("databases", TaskStatus.SUCCESS if ok else TaskStatus.ERROR)

    # -- table metadata -------------------------------------------------

    def load_table_metadata(self) -> None:
        self._set_phase(RunPhase.LOADING_TABLE_METADATA)
        tasks = []
        for db_record in self.record.databases.values():
            for table in db_record.active_tables:
                if is_success(table.phase):
                    continue
                tasks.append((f"{table.db_name}.{table.name}", self._metadata_task(table)))
        results = self._run_pool("metadata", self.metadata_workers, tasks)
        if phase_failed(results):
            raise self._fail(RunPhase.LOADING_TABLE_METADATA, MessageCode.COLLECTING_TABLE_DEFINITIONS)

    def _metadata_task(self, table: TableRecord) -> Callable[[], TaskResult]:
        key = f"{table.db_name}.{table.name}"

        def task() -> TaskResult:
            cfg = self.config
            try:
                if not self.cluster.load_table_definition(table, Side.LEFT):
                    table.mark_removed("No schema found on the LEFT cluster")
                    return TaskResult(key, TaskStatus.SUCCESS)
                check_table_filter(cfg, table)
                if table.remove:
                    return TaskResult(key, TaskStatus.SUCCESS)
                if cfg.needs_statistics(cfg.strategy):
                    self.cluster.load_stats(table, Side.LEFT)
                    check_size_filter(cfg, table)
                self.cluster.load_partitions(table, Side.LEFT)
                check_partition_filter(cfg, table)
                if table.remove:
                    return TaskResult(key, TaskStatus.SUCCESS)
                if cfg.strategy not in (StrategyKind.DUMP, StrategyKind.STORAGE_MIGRATION):
                    self.cluster.load_table_definition(table, Side.RIGHT)
            except Exception as e:
                log.exception("Loading metadata failed", extra=self._extra(key))
                table.add_error(Side.LEFT, f"Failed to load table metadata: {e}")
                return TaskResult(key, TaskStatus.ERROR, str(e))
            return TaskResult(key, TaskStatus.SUCCESS)
        return task

    # -- transfer -------------------------------------------------------

    def transfer(self) -> None:
        self._set_phase(RunPhase.TRANSFERRING)
        tasks = []
        for db_record in self.record.databases.values():
            for table in db_record.active_tables:
                tasks.append((f"{table.db_name}.{table.name}", self._transfer_task(db_record, table)))
        results = self._run_pool("transfer", self.transfer_workers, tasks)

        errors = [t for t in self.record.tables() if not t.remove and t.phase == PhaseState.ERROR]
        self.record.error_count = len(errors)
        if errors:
            self.record.codes.add_error(MessageCode.TABLE_TRANSFER, f"{len(errors)} table(s) failed")
        log.info("Transfer finished: %d task(s), %d table error(s)", len(results), len(errors),
                 extra=self._extra())

    def _error_side(self) -> Side:
        if self.config.strategy in (StrategyKind.DUMP, StrategyKind.STORAGE_MIGRATION):
            return Side.LEFT
        return Side.RIGHT

    def _transfer_task(self, db_record: DatabaseRecord, table: TableRecord) -> Callable[[], TaskResult]:
        key = f"{table.db_name}.{table.name}"

        def task() -> TaskResult:
            start = time.monotonic()
            try:
                return self._transfer_table(db_record, table, key)
            except Exception as e:
                log.exception("Table transfer failed", extra=self._extra(key))
                table.add_error(self._error_side(), f"FAILURE (check logs): {e}")
                if isinstance(e, TranslationError):
                    self.record.codes.add_error(MessageCode.TABLE_LOCATION_TRANSLATION, key)
                if table.phase not in TERMINAL:
                    table.advance(PhaseState.ERROR)
                return TaskResult(key, TaskStatus.FATAL, str(e))
            finally:
                table.stage_duration = int((time.monotonic() - start) * 1000)
        return task

    def _transfer_table(self, db_record: DatabaseRecord, table: TableRecord, key: str) -> TaskResult:
        if is_success(table.phase):
            if table.phase == PhaseState.PROCESSED:
                table.advance(PhaseState.RETRY_SKIPPED_PAST_SUCCESS)
            table.add_step("TRANSFER", "Skipped; processed by a previous run")
            return TaskResult(key, TaskStatus.SUCCESS, "skipped")
        table.reset_for_retry()

        table.advance(PhaseState.STARTED)
        strategy = resolve_strategy(self.config, table)
        table.strategy = strategy
        table.phase_count += 1
        table.add_step("TRANSFER", strategy.value)
        table.advance(PhaseState.CALCULATING_SQL)
        log.info("Calculating SQL with %s", strategy.value, extra=self._extra(key))

        ctx = StrategyContext(
            run_key=self.run_key, db=db_record, table=table, config=self.config,
            translator=self.translator, cluster=self.cluster, codes=self.record.codes,
            registry=self.registry,
        )
        result = self.registry.get(strategy).execute(ctx)
        if result.strategy is not None and result.strategy != strategy:
            table.strategy = result.strategy

        if result.status in (TaskStatus.ERROR, TaskStatus.FATAL):
            table.stage_message = result.message
            table.advance(PhaseState.ERROR)
            log.warning("Strategy failed: %s", result.message, extra=self._extra(key))
            return TaskResult(key, result.status, result.message)

        if self.config.distcp:
            self._register_copy_locations(ctx)

        warn = result.status == TaskStatus.INCOMPLETE or table.has_issues
        table.advance(PhaseState.CALCULATED_SQL_WARNING if warn else PhaseState.CALCULATED_SQL)
        return self._apply(table, result, key)

    def _apply(self, table: TableRecord, result: StrategyResult, key: str) -> TaskResult:
        if not result.auto_apply:
            table.stage_message = "SQL generated; it must be run manually"
            table.advance(PhaseState.PROCESSED)
            return TaskResult(key, TaskStatus.INCOMPLETE, table.stage_message)
        if result.apply_sides:
            table.advance(PhaseState.APPLYING_SQL)
            for side in result.apply_sides:
                if not self.cluster.run_table_sql(table, side):
                    table.stage_message = f"{side.value} SQL failed"
                    table.advance(PhaseState.ERROR)
                    return TaskResult(key, TaskStatus.ERROR, table.stage_message)
        table.stage_message = None
        table.advance(PhaseState.PROCESSED)
        return TaskResult(key, result.status)

    def _register_copy_locations(self, ctx: StrategyContext) -> None:
        """Record the directories the bulk copy has to move for this table."""
        cfg = self.config
        table = ctx.table
        original = ddl.get_location(ctx.left.definition)
        if not original:
            return
        database = cfg.resolved_db(table.db_name)
        final = ddl.get_location(ctx.right.definition)

        if cfg.transfer.intermediate_storage:
            hop = intermediate_location(cfg, self.run_key, table.db_name, table.name)
            self.translator.record_location(database, Side.LEFT, original, hop, 1)
            if final:
                self.translator.record_location(database, Side.RIGHT, hop, final, 1)
            return
        if cfg.strategy == StrategyKind.STORAGE_MIGRATION:
            # Table and partition moves were recorded while translating.
            return
        if cfg.transfer.common_storage:
            if final:
                self.translator.record_location(database, Side.LEFT, original, final, 1)
            return
        if ddl.is_acid(ctx.left.definition) and not cfg.migrate_acid.downgrade:
            table.add_issue(Side.RIGHT, MessageCode.DISTCP_FOR_SO_ACID.desc)
            self.record.codes.add_warning(MessageCode.DISTCP_FOR_SO_ACID, f"{table.db_name}.{table.name}")
            return
        if final:
            self.translator.record_location(database, self.translator.history_side(), original, final, 1)

    # -- copy plans -----------------------------------------------------

    def build_copy_plans(self) -> None:
        self._set_phase(RunPhase.BUILDING_COPY_PLANS)
        if not self.config.distcp:
            return
        self.record.copy_plans = build_all_plans(self.history, 1)
        if not self.output_dir:
            return
        for database, sides in self.record.copy_plans.items():
            for side_value, plan in sides.items():
                instructions = plan_instructions({target: set(sources) for target, sources in plan.items()})
                paths = write_copy_plan(self.output_dir, database, Side(side_value), instructions)
                log.info("Wrote %d copy plan file(s) for %s:%s", len(paths), database, side_value,
                         extra=self._extra())

    # -- run ------------------------------------------------------------

    def _stopped(self) -> bool:
        if self.cancel_token.cancelled:
            self.record.phase = RunPhase.CANCELLED
            log.warning("Run cancelled", extra=self._extra())
            return True
        return False

    def run(self) -> RunRecord:
        log.info("Starting run for %s with %s", self.config.databases, self.config.strategy.value,
                 extra=self._extra())
        try:
            for step in (self.collect, self.create_databases):
                if self._stopped():
                    return self.record
                step()
                self.checkpoint()
            if self.config.database_only:
                self.record.phase = RunPhase.DONE
                return self.record
            for step in (self.load_table_metadata, self.transfer, self.build_copy_plans):
                if self._stopped():
                    return self.record
                step()
                self.checkpoint()
            self.record.phase = RunPhase.DONE
        except PhaseFailedError as e:
            log.error("Run failed: %s", e, extra=self._extra())
            self.record.phase = RunPhase.FAILED
            raise
        except Exception:
            log.exception("Run aborted", extra=self._extra())
            self.record.phase = RunPhase.FAILED
            raise
        finally:
            self.checkpoint()
        log.info("Run completed with %d table error(s)", self.record.error_count, extra=self._extra())
        return self.record

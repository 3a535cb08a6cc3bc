"""Tests for the checkpoint stores and the run task wrapper."""
import tempfile
from pathlib import Path

import pytest
import yaml
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fakes import FakeCluster, FakeConnectionProvider, FakeQueries, make_config, table_ddl
from metamirror.checkpoint.stores import (
    InMemoryCheckpointStore, SqlAlchemyCheckpointStore, YamlFileCheckpointStore, run_status,
)
from metamirror.core.messages import MessageCode
from metamirror.core.workflow import PhaseState, RunPhase, Side
from metamirror.db.models import RunCheckpoint
from metamirror.db.session import Base
from metamirror.records.models import RunRecord, TableRecord
from metamirror.services.cluster import ClusterService
from metamirror.tasks import runs


def _record():
    record = RunRecord(run_key="r1", phase=RunPhase.TRANSFERRING)
    db = record.database("db1")
    table = db.add_table(TableRecord(name="t1", db_name="db1", phase=PhaseState.PROCESSED))
    table.env(Side.LEFT).definition = table_ddl("t1", location="hdfs://left/db1/t1")
    table.add_step("TRANSFER", "SCHEMA_ONLY")
    record.codes.add_warning(MessageCode.PARTITION_LOCATION_NOT_SET, "db1.t1")
    return record


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


def test_in_memory_store_returns_copies():
    store = InMemoryCheckpointStore()
    record = _record()
    store.save("r1", record)
    loaded = store.load("r1")
    assert loaded is not record
    assert loaded.to_dict() == record.to_dict()
    assert store.load("missing") is None


def test_yaml_store_round_trip():
    with tempfile.TemporaryDirectory() as tmp:
        store = YamlFileCheckpointStore(tmp)
        record = _record()
        store.save("r1", record)

        path = Path(tmp) / "r1.yaml"
        assert path.exists()
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert data["phase"] == "TRANSFERRING"

        loaded = store.load("r1")
        assert loaded.to_dict() == record.to_dict()
        assert loaded.databases["db1"].table("t1").phase == PhaseState.PROCESSED
        assert store.load("other") is None


def test_sqlalchemy_store(session_factory):
    store = SqlAlchemyCheckpointStore(session_factory)
    store.create("r1", {"databases": ["db1"]})
    record = _record()
    store.save("r1", record)

    loaded = store.load("r1")
    assert loaded.to_dict() == record.to_dict()
    assert store.load_config("r1") == {"databases": ["db1"]}

    db = session_factory()
    try:
        row = db.get(RunCheckpoint, "r1")
        assert row.phase == "TRANSFERRING"
        assert row.status == "RUNNING"
    finally:
        db.close()

    store.mark_failed("r1", "boom")
    db = session_factory()
    try:
        row = db.get(RunCheckpoint, "r1")
        assert row.status == "FAILED"
        assert row.error_message == "boom"
    finally:
        db.close()


def test_run_status():
    assert run_status(RunRecord(run_key="r", phase=RunPhase.DONE)) == "DONE"
    assert run_status(RunRecord(run_key="r", phase=RunPhase.DONE, error_count=2)) == "DONE_WITH_ERRORS"
    assert run_status(RunRecord(run_key="r", phase=RunPhase.CANCELLED)) == "CANCELLED"


class TestRunTask:

    def _provider(self):
        left = FakeCluster(Side.LEFT)
        left.add_database("db1", "hdfs://left/db1")
        left.add_table("db1", "t1", table_ddl("t1", location="hdfs://left/db1/t1"))
        return FakeConnectionProvider(left, FakeCluster(Side.RIGHT))

    def test_execute_run(self, session_factory):
        provider = self._provider()
        runs.register_provider_factory(lambda cfg: ClusterService(cfg, provider, FakeQueries()))
        store = SqlAlchemyCheckpointStore(session_factory)
        try:
            status = runs.execute_run("r1", make_config().model_dump(mode="json"), store=store)
        finally:
            runs.register_provider_factory(None)

        assert status == "DONE"
        record = store.load("r1")
        assert record.phase == RunPhase.DONE
        assert record.databases["db1"].table("t1").phase == PhaseState.PROCESSED

    def test_missing_provider_marks_failed(self, session_factory):
        store = SqlAlchemyCheckpointStore(session_factory)
        status = runs.execute_run("r2", make_config().model_dump(mode="json"), store=store)
        assert status == "FAILED"
        db = session_factory()
        try:
            row = db.get(RunCheckpoint, "r2")
            assert row.status == "FAILED"
            assert "provider" in row.error_message
        finally:
            db.close()

    def test_unknown_run(self, session_factory):
        store = SqlAlchemyCheckpointStore(session_factory)
        assert runs.execute_run("nope", store=store) == "NOT_FOUND"

    def test_task_registered(self):
        assert runs.run_mirror.name == "run_mirror"

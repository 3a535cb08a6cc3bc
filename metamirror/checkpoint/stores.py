from __future__ import annotations
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

import yaml
from sqlalchemy.orm import Session

from metamirror.core.workflow import RunPhase
from metamirror.db.models import RunCheckpoint
from metamirror.records.models import RunRecord

log = logging.getLogger(__name__)


class CheckpointStore(Protocol):
    def save(self, run_key: str, record: RunRecord) -> None: ...
    def load(self, run_key: str) -> Optional[RunRecord]: ...


def run_status(record: RunRecord) -> str:
    if record.phase == RunPhase.DONE:
        return "DONE_WITH_ERRORS" if record.error_count else "DONE"
    if record.phase in (RunPhase.FAILED, RunPhase.CANCELLED):
        return record.phase.value
    if record.phase == RunPhase.INIT:
        return "QUEUED"
    return "RUNNING"


class InMemoryCheckpointStore:
    """Keeps serialised records in a dict; a loaded record is always a fresh copy."""

    def __init__(self):
        self._lock = threading.Lock()
        self._data: Dict[str, dict] = {}

    def save(self, run_key: str, record: RunRecord) -> None:
        payload = record.to_dict()
        with self._lock:
            self._data[run_key] = payload

    def load(self, run_key: str) -> Optional[RunRecord]:
        with self._lock:
            payload = self._data.get(run_key)
        return RunRecord.from_dict(payload) if payload is not None else None


class YamlFileCheckpointStore:
    """One <run_key>.yaml per run under a directory."""

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def path_for(self, run_key: str) -> Path:
        return self.directory / f"{run_key}.yaml"

    def save(self, run_key: str, record: RunRecord) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(run_key)
        tmp = path.with_suffix(".yaml.tmp")
        with self._lock:
            with open(tmp, "w", encoding="utf-8") as f:
                yaml.safe_dump(record.to_dict(), f, default_flow_style=False, sort_keys=False, allow_unicode=True)
            tmp.replace(path)
        log.debug("Checkpoint written to %s", path, extra={"run_key": run_key})

    def load(self, run_key: str) -> Optional[RunRecord]:
        path = self.path_for(run_key)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return RunRecord.from_dict(data) if data else None


class SqlAlchemyCheckpointStore:
    """Stores the record as JSON on a run_checkpoints row."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def create(self, run_key: str, config: dict) -> None:
        db = self.session_factory()
        try:
            row = db.get(RunCheckpoint, run_key)
            if row is None:
                row = RunCheckpoint(run_key=run_key)
                db.add(row)
            row.config = config
            row.status = "QUEUED"
            row.updated_at = datetime.utcnow()
            db.commit()
        finally:
            db.close()

    def save(self, run_key: str, record: RunRecord) -> None:
        db = self.session_factory()
        try:
            row = db.get(RunCheckpoint, run_key)
            if row is None:
                row = RunCheckpoint(run_key=run_key, config={})
                db.add(row)
            row.phase = record.phase.value
            row.status = run_status(record)
            row.payload = record.to_dict()
            row.updated_at = datetime.utcnow()
            db.commit()
        finally:
            db.close()

    def load(self, run_key: str) -> Optional[RunRecord]:
        db = self.session_factory()
        try:
            row = db.get(RunCheckpoint, run_key)
            if row is None or not row.payload:
                return None
            return RunRecord.from_dict(row.payload)
        finally:
            db.close()

    def load_config(self, run_key: str) -> Optional[dict]:
        db = self.session_factory()
        try:
            row = db.get(RunCheckpoint, run_key)
            return dict(row.config) if row is not None and row.config else None
        finally:
            db.close()

    def mark_failed(self, run_key: str, message: str) -> None:
        db = self.session_factory()
        try:
            row = db.get(RunCheckpoint, run_key)
            if row is None:
                return
            row.status = "FAILED"
            row.phase = RunPhase.FAILED.value
            row.error_message = message
            row.updated_at = datetime.utcnow()
            db.commit()
        finally:
            db.close()

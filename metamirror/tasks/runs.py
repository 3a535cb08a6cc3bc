from __future__ import annotations
import logging
from pathlib import Path
from typing import Callable, Optional

from metamirror.checkpoint.stores import SqlAlchemyCheckpointStore, run_status
from metamirror.core.config import settings
from metamirror.core.engine import MirrorEngine
from metamirror.core.errors import ConfigurationError
from metamirror.db.session import SessionLocal
from metamirror.schemas.config import RunConfig
from metamirror.services.cluster import ClusterService
from metamirror.tasks.celery_app import celery_app

log = logging.getLogger(__name__)

# Builds the cluster service (connections, query definitions, shell pool) for a run.
ClusterFactory = Callable[[RunConfig], ClusterService]

_cluster_factory: Optional[ClusterFactory] = None


def register_provider_factory(factory: Optional[ClusterFactory]) -> None:
    global _cluster_factory
    _cluster_factory = factory


def execute_run(run_key: str, config: Optional[dict] = None,
                store: Optional[SqlAlchemyCheckpointStore] = None) -> str:
    """Run (or resume) one mirror run and return its final status."""
    store = store or SqlAlchemyCheckpointStore(SessionLocal)
    try:
        if config is None:
            config = store.load_config(run_key)
            if config is None:
                log.error("Run not found", extra={"run_key": run_key, "table": "-"})
                return "NOT_FOUND"
        else:
            store.create(run_key, config)

        run_config = RunConfig.model_validate(config)
        if _cluster_factory is None:
            raise ConfigurationError("No cluster provider factory registered")
        cluster = _cluster_factory(run_config)

        previous = store.load(run_key)
        if previous is not None:
            log.info("Resuming from checkpoint in phase %s", previous.phase.value,
                     extra={"run_key": run_key, "table": "-"})
        engine = MirrorEngine(run_config, cluster, run_key=run_key, run=previous, store=store,
                              output_dir=str(Path(settings.output_dir) / run_key))
        record = engine.run()
        status = run_status(record)
        log.info("Run finished with status %s", status, extra={"run_key": run_key, "table": "-"})
        return status

    except Exception as e:
        log.exception("Run failed", extra={"run_key": run_key, "table": "-"})
        store.mark_failed(run_key, str(e))
        return "FAILED"


@celery_app.task(name="run_mirror")
def run_mirror(run_key: str, config: Optional[dict] = None) -> str:
    return execute_run(run_key, config)

"""Command line entry point.

Usage:
    python -m metamirror.main migrate
    python -m metamirror.main submit --config run.yaml [--run-key KEY]
"""
import argparse
import logging
import sys
import time

import yaml
from sqlalchemy import text
from alembic.config import Config
from alembic import command

from metamirror.core.config import settings
from metamirror.core.engine import new_run_key
from metamirror.core.logging import configure_logging
from metamirror.db.session import engine
from metamirror.schemas.config import RunConfig

log = logging.getLogger(__name__)


def wait_for_database(max_retries: int = 30, retry_delay: float = 1.0) -> None:
    """Wait for the checkpoint database to be available."""
    for attempt in range(max_retries):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            log.info("Database connection successful")
            return
        except Exception as e:
            if attempt < max_retries - 1:
                log.warning("Database not ready, retrying in %s seconds (attempt %d/%d): %s",
                            retry_delay, attempt + 1, max_retries, e)
                time.sleep(retry_delay)
            else:
                log.error("Database connection failed after %d attempts", max_retries)
                raise


def run_migrations() -> None:
    """Run Alembic migrations to head."""
    try:
        log.info("Running database migrations...")
        alembic_cfg = Config("alembic.ini")
        command.upgrade(alembic_cfg, "head")
        log.info("Database migrations completed successfully")
    except Exception as e:
        log.error("Database migration failed: %s", e, exc_info=True)
        raise


def load_run_config(path: str) -> RunConfig:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return RunConfig.model_validate(data)


def submit(config_path: str, run_key: str = None) -> str:
    from metamirror.tasks.runs import run_mirror

    run_config = load_run_config(config_path)
    run_key = run_key or new_run_key()
    run_mirror.delay(run_key, run_config.model_dump(mode="json"))
    log.info("Submitted run for %s", ", ".join(run_config.databases), extra={"run_key": run_key})
    return run_key


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="metamirror")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("migrate", help="Apply checkpoint database migrations")
    submit_parser = sub.add_parser("submit", help="Queue a mirror run")
    submit_parser.add_argument("--config", required=True, help="YAML run configuration")
    submit_parser.add_argument("--run-key", default=None)
    args = parser.parse_args(argv)

    configure_logging(settings.log_level)
    if args.command == "migrate":
        wait_for_database()
        run_migrations()
        return 0
    print(submit(args.config, args.run_key))
    return 0


if __name__ == "__main__":
    sys.exit(main())

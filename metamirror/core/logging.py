import logging
import sys


class ContextFormatter(logging.Formatter):
    """Formatter that tolerates records without run_key/table context."""
    def format(self, record):
        if not hasattr(record, 'run_key'):
            record.run_key = '-'
        if not hasattr(record, 'table'):
            record.table = '-'
        return super().format(record)


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ContextFormatter(
        "%(asctime)s %(levelname)s %(name)s [run=%(run_key)s table=%(table)s] - %(message)s"
    ))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[handler],
    )

import logging
import sys

from pythonjsonlogger import jsonlogger

from cardgather.config import settings


def setup_logging(level: str | None = None) -> None:
    """Configure JSON structured logging on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
    )
    handler.setFormatter(formatter)
    logging.root.handlers = [handler]
    level_name = (level or settings.log_level).upper()
    logging.root.setLevel(getattr(logging, level_name, logging.INFO))

    # Suppress verbose logs from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

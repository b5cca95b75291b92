import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Schema drift must stay visible even when the app runs at ERROR
DRIFT_LOGGERS = ("common.schema_tolerant", "common.schema_registry")


def setup_logging(level: Optional[str] = "INFO") -> None:
    """
    Send every logger to stdout through one handler on the root logger.
    Safe to call again (reloads, test app factories): old root handlers are replaced.
    """
    log_level = getattr(logging, str(level or "INFO").upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root_logger.addHandler(handler)

    for name in DRIFT_LOGGERS:
        logging.getLogger(name).setLevel(min(log_level, logging.WARNING))

    # Uvicorn installs its own handlers; route its records through ours instead
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True

    if log_level > logging.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

import logging
import sys

from dealhub.config import settings

LOG_FORMAT  = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
DATE_FORMAT = "%H:%M:%S"

# Library loggers that flood INFO with per-run chatter
NOISY_LOGGERS = ("apscheduler.scheduler", "apscheduler.executors.default", "sqlalchemy.engine")


def get_logger(name: str) -> logging.Logger:
    """Stdout logger for a dealhub module. Handlers are attached once per name."""
    log = logging.getLogger(name)
    if log.handlers:
        return log
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    log.addHandler(handler)
    log.setLevel(getattr(logging, settings.log_level, logging.INFO))
    log.propagate = False
    return log


def quiet_library_loggers(level: int = logging.WARNING) -> None:
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)

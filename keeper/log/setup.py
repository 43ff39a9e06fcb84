import sys
import logging
from pathlib import Path
from typing import Optional
from logging.handlers import RotatingFileHandler

from keeper.config import effective_settings as config
from keeper.log.handler import LokiHandler

# The pid tells supervisor and child lines apart.
LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s:%(process)d] - %(message)s'


class MainFormatter(logging.Formatter):
    """Formatter shared by the console and file handlers."""

    def __init__(self) -> None:
        super().__init__(LOG_FORMAT)


def _file_handler(log_file: str) -> RotatingFileHandler:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_file,
        maxBytes=config.LOG_FILE_MAX_BYTES,
        backupCount=config.LOG_FILE_BACKUP_COUNT,
    )
    handler.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))
    handler.setFormatter(MainFormatter())
    return handler


def setup_logging(console_level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """
    Replaces the root logger's handlers with Keeper's.

    Always installs a console handler on stdout. A rotating file handler is
    added when a log file is configured, which is the only output left once
    the supervisor has daemonized. A Loki handler is added when LOKI_ENABLED
    is set.

    :param console_level: Level of the console handler.
    :param log_file: Log file path. Defaults to LOG_FILE_PATH; empty disables file logging.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    console.setFormatter(MainFormatter())
    root_logger.addHandler(console)

    log_file = config.LOG_FILE_PATH if log_file is None else log_file
    if log_file:
        try:
            root_logger.addHandler(_file_handler(log_file))
        except OSError as e:
            root_logger.error(f"Could not open log file '{log_file}': {e}")

    if config.LOKI_ENABLED:
        try:
            loki = LokiHandler(url=config.LOKI_URL, org_id=config.LOKI_ORG_ID or None)
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")
            return
        loki.setLevel(logging.INFO)
        root_logger.addHandler(loki)
        root_logger.info(f"Grafana Loki logging handler initialized for {config.LOKI_URL}.")

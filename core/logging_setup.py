"""Rotating file + console logging for the simulator CLI and batch runs."""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Iterable, Optional

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
DEFAULT_LOG_FILE = 'tradesim.log'


def teardown_logging(logger: Optional[logging.Logger] = None) -> None:
    """Flush, detach, and close every handler attached to ``logger`` (root by default)."""
    target = logger or logging.getLogger()
    for handler in list(target.handlers):
        target.removeHandler(handler)
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError):
            # A handler whose stream is already gone has nothing left to flush.
            continue


def setup_logging(
    log_level: str = 'INFO',
    logs_dir: Optional[Path] = None,
    console_output: bool = True,
    log_file_name: str = DEFAULT_LOG_FILE,
    quiet_loggers: Iterable[str] = ('matplotlib', 'urllib3'),
) -> logging.Logger:
    """
    Configure the root logger for a simulation session.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logs_dir: Directory for the rotating log file. Defaults to ``logs/`` under the cwd.
        console_output: Also echo INFO and above to stdout
        log_file_name: File name inside ``logs_dir``
        quiet_loggers: Third-party logger names capped at WARNING

    Returns:
        The configured root logger
    """
    if logs_dir is None:
        logs_dir = Path.cwd() / 'logs'
    logs_dir = Path(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, str(log_level).upper(), logging.INFO)
    logger = logging.getLogger()
    logger.setLevel(level)

    # Release file descriptors held by a previous session.
    teardown_logging(logger)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = logs_dir / log_file_name
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=3,
        encoding='utf-8',
        delay=True,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(max(level, logging.INFO))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging initialized at %s level, file=%s", log_level, log_file)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return the module logger for ``name`` (typically ``__name__``)."""
    return logging.getLogger(name)

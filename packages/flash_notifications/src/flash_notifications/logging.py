import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Generator, Optional, Union

# Id of the notification currently being scheduled, fired or updated
current_notification_id: ContextVar[Optional[int]] = ContextVar(
    "current_notification_id", default=None
)


class TraceFormatter(logging.Formatter):
    """
    Formatter that prefixes records with the active notification id and
    renders timestamps in UTC, matching the UTC fire times in the logs.
    """

    def __init__(self, fmt: str | None = None, datefmt: str | None = None):
        super().__init__(fmt, datefmt)
        self.converter = time.gmtime

    def formatTime(self, record, datefmt=None):
        ct = self.converter(record.created)
        if datefmt:
            return time.strftime(datefmt, ct)
        t = time.strftime("%Y-%m-%d %H:%M:%S", ct)
        return "%s.%03dZ" % (t, record.msecs)

    def format(self, record: logging.LogRecord) -> str:
        nid = current_notification_id.get()
        record.trace_str = f"[notification={nid}] " if nid is not None else ""
        return super().format(record)


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = 5_242_880,  # 5MB
    backup_count: int = 5,
    module_name: str = "flash_notifications",
) -> logging.Logger:
    """
    Configure the package logger.

    Only the ``flash_notifications`` namespace is configured; the host
    application keeps control of the root logger.

    Args:
        level: Logging level name or number.
        log_file: Optional path for a rotating log file.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    target_logger = logging.getLogger(module_name)
    target_logger.handlers.clear()
    target_logger.setLevel(level)

    formatter = TraceFormatter(
        "%(asctime)s %(levelname)-8s %(trace_str)s%(name)s: %(message)s"
    )

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    target_logger.addHandler(console)

    if log_file:
        file_path = Path(log_file).resolve()
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                file_path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            target_logger.addHandler(file_handler)
        except OSError as e:
            sys.stderr.write(f"Failed to setup log file: {e}\n")

    target_logger.propagate = False
    return target_logger


@contextmanager
def scoped_notification_id(notification_id: int) -> Generator[None, None, None]:
    """
    Tag every log record emitted inside the block with a notification id.

    >>> with scoped_notification_id(42):
    ...     logger.info("Presenting")   # "[notification=42] ... Presenting"
    """
    token = current_notification_id.set(notification_id)
    try:
        yield
    finally:
        current_notification_id.reset(token)

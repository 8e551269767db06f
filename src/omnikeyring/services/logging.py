"""
Logging - Application logging configuration and disk persistence.

Provides:
- Python logging configuration with console and optional daily-file output
- Log persistence to daily files: omnikeyring-YYYY-MM-DD.log
- Automatic cleanup of old log files

Nothing here ever sees secrets; callers log addresses and usernames only.
"""

from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional
import logging

from ..utils import get_logs_dir

LOG_FILE_PREFIX = "omnikeyring-"
LOG_DATE_FORMAT = "%Y-%m-%d"

CONSOLE_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
FILE_FORMAT = '[%(asctime)s] [%(levelname)s] %(name)s: %(message)s'


class DailyFileHandler(logging.Handler):
    """Writes formatted records to today's log file via append_log()."""

    def __init__(self, retention_days: int):
        super().__init__()
        self.retention_days = retention_days

    def emit(self, record: logging.LogRecord) -> None:
        try:
            append_log(self.format(record), self.retention_days)
        except Exception:
            self.handleError(record)


def configure_logging(level: int = logging.INFO, retention_days: int = 0) -> None:
    """
    Configure the root logger once per process.

    Args:
        level: Logging level (default: INFO)
        retention_days: Days of log files to keep (0 = console only)
    """
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    root_logger.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
    root_logger.addHandler(console_handler)

    if retention_days > 0:
        removed = cleanup_old_logs(retention_days)
        file_handler = DailyFileHandler(retention_days)
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(FILE_FORMAT, datefmt=f'{LOG_DATE_FORMAT} %H:%M:%S')
        )
        root_logger.addHandler(file_handler)
        if removed:
            logging.getLogger(__name__).debug(f"Removed {removed} expired log file(s)")


def get_log_file_path(day: Optional[datetime] = None) -> Path:
    """Log file for a day (defaults to today)."""
    day = day or datetime.now()
    return get_logs_dir() / f"{LOG_FILE_PREFIX}{day.strftime(LOG_DATE_FORMAT)}.log"


def _log_file_date(path: Path) -> Optional[date]:
    """Date encoded in a log file name, or None for foreign files."""
    try:
        return datetime.strptime(path.stem[len(LOG_FILE_PREFIX):], LOG_DATE_FORMAT).date()
    except ValueError:
        return None


def _with_date(message: str) -> str:
    """'[HH:MM:SS] msg' -> '[YYYY-MM-DD HH:MM:SS] msg'; other lines unchanged."""
    if len(message) > 10 and message[0] == '[' and message[9] == ']':
        return f"[{datetime.now().strftime(LOG_DATE_FORMAT)} {message[1:]}"
    return message


def append_log(message: str, retention_days: int = 0) -> None:
    """
    Append one line to today's log file.

    Args:
        message: The log message (should already include timestamp)
        retention_days: If 0, don't save to disk
    """
    if retention_days <= 0:
        return

    try:
        with open(get_log_file_path(), 'a', encoding='utf-8') as f:
            f.write(_with_date(message) + '\n')
    except OSError:
        # Logging must never break a keyring operation
        pass


def load_recent_logs(max_lines: int = 500, days: int = 2) -> list[str]:
    """
    Most recent log lines, oldest first.

    Walks back from today's file through at most `days` daily files until
    max_lines lines are collected.
    """
    if max_lines <= 0:
        return []

    lines: list[str] = []
    today = datetime.now()
    for offset in range(max(days, 1)):
        if len(lines) >= max_lines:
            break
        path = get_log_file_path(today - timedelta(days=offset))
        if path.exists():
            lines = _read_last_n_lines(path, max_lines - len(lines)) + lines
    return lines


def _read_last_n_lines(file_path: Path, n: int) -> list[str]:
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            return [line.rstrip('\n') for line in f.readlines()[-n:]]
    except OSError:
        return []


def cleanup_old_logs(retention_days: int) -> int:
    """
    Delete log files older than retention_days.

    Files whose names don't carry a date are left alone.

    Returns:
        Number of files deleted
    """
    if retention_days < 0:
        return 0

    cutoff = (datetime.now() - timedelta(days=retention_days)).date()
    deleted = 0
    for path in get_logs_dir().glob(f"{LOG_FILE_PREFIX}*.log"):
        file_date = _log_file_date(path)
        if file_date is None or file_date >= cutoff:
            continue
        try:
            path.unlink()
            deleted += 1
        except OSError:
            continue
    return deleted

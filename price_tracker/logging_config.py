"""Logging setup: readable console output plus JSON log files."""

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from pythonjsonlogger import jsonlogger

from price_tracker.config import settings

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Loggers that drown crawl output at DEBUG
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "aiosqlite")


class CrawlJsonFormatter(jsonlogger.JsonFormatter):
    """JSON records with UTC timestamp, level and call site."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["source"] = f"{record.filename}:{record.lineno}"


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = RotatingFileHandler(
        path,
        maxBytes=settings.log_file_max_bytes,
        backupCount=settings.log_file_backups,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_dir: Optional[Union[str, Path]] = None) -> logging.Logger:
    """
    Configure the root logger.

    Console output stays human-readable. `crawler.log` gets every record as
    JSON and `errors.log` only ERROR and above. An empty `log_dir` setting
    disables the files.

    Args:
        log_dir: Directory for the JSON log files (defaults to config)
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    directory = log_dir if log_dir is not None else settings.log_dir
    if directory:
        path = Path(directory)
        path.mkdir(parents=True, exist_ok=True)
        json_formatter = CrawlJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
        root.addHandler(_file_handler(path / "crawler.log", logging.DEBUG, json_formatter))
        root.addHandler(_file_handler(path / "errors.log", logging.ERROR, json_formatter))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


class LoggerAdapter(logging.LoggerAdapter):
    """Attaches fixed context (job id, job type) to every record."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        if "job_id" in self.extra:
            msg = f"[job {self.extra['job_id']}] {msg}"
        return msg, kwargs


def get_logger(name: str, **context) -> LoggerAdapter:
    """
    Logger carrying context fields into console and JSON output.

    Args:
        name: Logger name (usually __name__)
        **context: Context fields, e.g. job_id=12, job_type="manual"
    """
    return LoggerAdapter(logging.getLogger(name), context)

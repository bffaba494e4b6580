"""Structured JSON log formatter and logging configuration.

The bridge runs unattended (container, systemd), so by default it
emits one JSON object per log record on a single line (NDJSON).  Each
line carries the ``service`` name and application ``version`` so log
aggregators can filter without extra configuration.  A plain text
format is available for terminals.

Secrets never reach the log: the HTTP client names endpoints instead
of logging URLs, and ``httpx``'s own request logging is held at
WARNING because Mill query strings carry tokens.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from millbridge._settings import LoggingSettings

_ONE_MB = 1024 * 1024

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, one record per line.

    Fields: ``timestamp`` (UTC, ISO 8601), ``level``, ``logger``,
    ``message`` and ``service``, plus ``version`` when set and
    ``exception`` / ``stack_info`` when the record carries them.
    """

    def __init__(self, *, service: str = "", version: str = "") -> None:
        super().__init__()
        self._service = service
        self._version = version

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self._service,
        }
        if self._version:
            entry["version"] = self._version
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> None:
    """Replace the root logger's handlers with ones built from *settings*.

    Records go to ``stderr`` and, when ``settings.file`` is set, to a
    size-rotated file as well.
    """
    formatter: logging.Formatter = (
        JsonFormatter(service=service, version=version)
        if settings.format == "json"
        else logging.Formatter(_TEXT_FORMAT)
    )
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.file is not None:
        handlers.append(
            RotatingFileHandler(
                settings.file,
                maxBytes=settings.max_file_size_mb * _ONE_MB,
                backupCount=settings.backup_count,
            )
        )

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(settings.level)

    # httpx logs every request URL at INFO, query string included, and
    # the Mill API carries the refresh token in the query string.
    logging.getLogger("httpx").setLevel(logging.WARNING)

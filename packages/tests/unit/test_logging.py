"""Tests for millbridge._logging — JSON formatter and root logger setup.

Test Techniques Used:
    - Specification-based Testing: JsonFormatter output schema
    - State Inspection: root logger handlers and levels after configure
    - Fixture Isolation: root logger state saved and restored
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from millbridge._logging import JsonFormatter, configure_logging
from millbridge._settings import LoggingSettings


@pytest.fixture
def _restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    httpx_level = logging.getLogger("httpx").level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
    logging.getLogger("httpx").setLevel(httpx_level)


def _record(message: str = "polled %d devices", *args: object) -> logging.LogRecord:
    return logging.LogRecord(
        name="millbridge._poller",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=args or (3,),
        exc_info=None,
    )


class TestJsonFormatter:
    def test_single_line_with_required_fields(self) -> None:
        line = JsonFormatter(service="millbridge", version="0.1.0").format(_record())

        assert "\n" not in line
        entry = json.loads(line)
        assert entry["level"] == "INFO"
        assert entry["logger"] == "millbridge._poller"
        assert entry["message"] == "polled 3 devices"
        assert entry["service"] == "millbridge"
        assert entry["version"] == "0.1.0"

    def test_timestamp_is_utc(self) -> None:
        entry = json.loads(JsonFormatter().format(_record()))

        parsed = datetime.fromisoformat(entry["timestamp"])
        assert parsed.utcoffset() is not None
        assert parsed.utcoffset().total_seconds() == 0  # type: ignore[union-attr]

    def test_version_omitted_when_empty(self) -> None:
        entry = json.loads(JsonFormatter(service="millbridge").format(_record()))

        assert "version" not in entry

    def test_exception_is_embedded(self) -> None:
        record = _record()
        try:
            raise ValueError("vendor said no")
        except ValueError:
            record.exc_info = sys.exc_info()

        line = JsonFormatter().format(record)

        assert "\n" not in line
        assert "vendor said no" in json.loads(line)["exception"]

    def test_stack_info_is_embedded(self) -> None:
        record = _record()
        record.stack_info = "Stack (most recent call last)"

        assert "stack_info" in json.loads(JsonFormatter().format(record))


@pytest.mark.usefixtures("_restore_root_logger")
class TestConfigureLogging:
    def test_json_format(self) -> None:
        configure_logging(LoggingSettings(format="json"), service="millbridge")

        (handler,) = logging.getLogger().handlers
        assert isinstance(handler.formatter, JsonFormatter)

    def test_text_format(self) -> None:
        configure_logging(LoggingSettings(format="text"), service="millbridge")

        (handler,) = logging.getLogger().handlers
        assert not isinstance(handler.formatter, JsonFormatter)

    def test_level_applied(self) -> None:
        configure_logging(LoggingSettings(level="DEBUG"), service="millbridge")

        assert logging.getLogger().level == logging.DEBUG

    def test_existing_handlers_replaced(self) -> None:
        stale = logging.StreamHandler()
        logging.getLogger().addHandler(stale)

        configure_logging(LoggingSettings(), service="millbridge")

        assert stale not in logging.getLogger().handlers

    def test_httpx_request_logging_is_quiet(self) -> None:
        configure_logging(LoggingSettings(level="DEBUG"), service="millbridge")

        assert logging.getLogger("httpx").level == logging.WARNING

    def test_rotating_file(self, tmp_path: Path) -> None:
        settings = LoggingSettings(
            file=str(tmp_path / "bridge.log"), max_file_size_mb=2, backup_count=5
        )

        configure_logging(settings, service="millbridge")

        handlers = logging.getLogger().handlers
        (rotating,) = [h for h in handlers if isinstance(h, RotatingFileHandler)]
        assert rotating.maxBytes == 2 * 1024 * 1024
        assert rotating.backupCount == 5

"""Tests for millbridge._errors — exception taxonomy and error events.

Test Techniques Used:
    - Specification-based Testing: payload schema and type mapping
    - Dependency Injection: deterministic clock for timestamps
    - Exception Safety: publication failures are logged, not raised
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from millbridge._errors import (
    ApiError,
    AuthError,
    ControlError,
    ErrorPublisher,
    FetchError,
    InvalidCommandError,
    MillBridgeError,
    RefreshError,
    RefreshWindowExpired,
    build_error_payload,
)
from millbridge.testing import MockMqttClient

FIXED = datetime(2026, 2, 14, 12, 34, 56, tzinfo=UTC)


class TestTaxonomy:
    @pytest.mark.parametrize(
        "exc_type",
        [
            ApiError,
            AuthError,
            RefreshError,
            RefreshWindowExpired,
            FetchError,
            ControlError,
            InvalidCommandError,
        ],
    )
    def test_all_derive_from_base(self, exc_type: type[Exception]) -> None:
        assert issubclass(exc_type, MillBridgeError)

    def test_api_error_carries_codes(self) -> None:
        error = ApiError("boom", status_code=502, error_code=None)

        assert (error.status_code, error.error_code) == (502, None)
        assert str(error) == "boom"


class TestBuildErrorPayload:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (RefreshWindowExpired("lapsed"), "refresh_window_expired"),
            (RefreshError("rejected"), "refresh_error"),
            (ControlError("nope"), "control_error"),
            (FetchError("down"), "fetch_error"),
            (ValueError("other"), "error"),
        ],
    )
    def test_error_types(self, error: Exception, expected: str) -> None:
        assert build_error_payload(error).error_type == expected

    def test_exact_class_match_only(self) -> None:
        class Custom(AuthError):
            pass

        assert build_error_payload(Custom("x")).error_type == "error"

    def test_fields(self) -> None:
        payload = build_error_payload(
            ControlError("rejected"),
            device="42",
            details={"temp": 21},
            clock=lambda: FIXED,
        )

        assert json.loads(payload.to_json()) == {
            "error_type": "control_error",
            "message": "rejected",
            "device": "42",
            "timestamp": "2026-02-14T12:34:56+00:00",
            "details": {"temp": 21},
        }


class TestErrorPublisher:
    async def test_publishes_unretained_event(self, mock_mqtt: MockMqttClient) -> None:
        publisher = ErrorPublisher(
            mqtt=mock_mqtt, topic_prefix="mill", clock=lambda: FIXED
        )

        await publisher.publish(FetchError("home listing failed"))

        ((payload, retain, qos),) = mock_mqtt.get_messages_for("mill/error")
        assert json.loads(payload)["error_type"] == "fetch_error"
        assert (retain, qos) == (False, 1)

    async def test_logs_at_requested_level(
        self, mock_mqtt: MockMqttClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        publisher = ErrorPublisher(mqtt=mock_mqtt, topic_prefix="mill")

        with caplog.at_level(logging.DEBUG, logger="millbridge._errors"):
            await publisher.publish(
                RefreshWindowExpired("log in again"), level=logging.CRITICAL
            )

        (record,) = caplog.records
        assert record.levelno == logging.CRITICAL
        assert "refresh_window_expired" in record.getMessage()

    async def test_custom_type_map(self, mock_mqtt: MockMqttClient) -> None:
        publisher = ErrorPublisher(
            mqtt=mock_mqtt, topic_prefix="mill", error_type_map={KeyError: "missing"}
        )

        await publisher.publish(KeyError("x"))

        assert mock_mqtt.get_json_for("mill/error")[0]["error_type"] == "missing"

    async def test_publish_failure_is_swallowed(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        mqtt = AsyncMock()
        mqtt.publish.side_effect = RuntimeError("broker down")
        publisher = ErrorPublisher(mqtt=mqtt, topic_prefix="mill")

        await publisher.publish(ControlError("x"))

        assert "Failed to publish error to mill/error" in caplog.text

    async def test_build_failure_is_swallowed(
        self, mock_mqtt: MockMqttClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        def broken_clock() -> datetime:
            raise RuntimeError("clock broke")

        publisher = ErrorPublisher(
            mqtt=mock_mqtt, topic_prefix="mill", clock=broken_clock
        )

        await publisher.publish(ControlError("x"))

        assert mock_mqtt.published == []
        assert "Failed to build error payload" in caplog.text

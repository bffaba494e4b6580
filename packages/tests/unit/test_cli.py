"""Tests for millbridge._cli — Typer command line.

Test Techniques Used:
    - Specification-based Testing: flags and their settings overrides
    - Error Condition Testing: invalid flag values and configuration
    - Behavioural Testing: exit codes and output text
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from millbridge._app import BridgeApp
from millbridge._cli import EXIT_CONFIG_ERROR, EXIT_OK, EXIT_RUNTIME_ERROR, build_cli
from millbridge._settings import Settings


@pytest.fixture
def app() -> BridgeApp:
    return BridgeApp(name="testbridge", version="1.0.0")


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def _no_env_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


def _capture(app: BridgeApp, runner: CliRunner, args: list[str]) -> Settings:
    captured: list[Settings] = []

    async def fake_run(**kwargs: object) -> None:
        captured.append(kwargs["settings"])  # type: ignore[arg-type]

    with patch.object(app, "_run_async", side_effect=fake_run):
        result = runner.invoke(build_cli(app), args)

    assert result.exit_code == EXIT_OK, result.output
    return captured[0]


class TestInfoFlags:
    def test_version(self, app: BridgeApp, runner: CliRunner) -> None:
        result = runner.invoke(build_cli(app), ["--version"])

        assert result.exit_code == EXIT_OK
        assert "testbridge v1.0.0" in result.output

    def test_help_lists_options(self, app: BridgeApp, runner: CliRunner) -> None:
        result = runner.invoke(build_cli(app), ["--help"])

        assert result.exit_code == EXIT_OK
        for option in ("--log-level", "--log-format", "--poll-minutes", "--env-file"):
            assert option in result.output


class TestOverrides:
    def test_log_level_and_format(self, app: BridgeApp, runner: CliRunner) -> None:
        args = ["--log-level", "debug", "--log-format", "TEXT"]

        settings = _capture(app, runner, args)

        assert settings.logging.level == "DEBUG"
        assert settings.logging.format == "text"

    def test_poll_minutes(self, app: BridgeApp, runner: CliRunner) -> None:
        settings = _capture(app, runner, ["--poll-minutes", "2"])

        assert settings.mill.poll_minutes == 2

    def test_env_file_is_read(
        self, app: BridgeApp, runner: CliRunner, tmp_path: Path
    ) -> None:
        env_file = tmp_path / "bridge.env"
        env_file.write_text(
            "MILLBRIDGE_MILL__USERNAME=me@example.com\n"
            "MILLBRIDGE_MQTT__TOPIC_PREFIX=heat\n",
            encoding="utf-8",
        )

        settings = _capture(app, runner, ["--env-file", str(env_file)])

        assert settings.mill.username == "me@example.com"
        assert settings.mqtt.topic_prefix == "heat"

    def test_defaults_untouched(self, app: BridgeApp, runner: CliRunner) -> None:
        settings = _capture(app, runner, [])

        assert settings.mill.poll_minutes == 5
        assert settings.logging.level == "INFO"


class TestExitCodes:
    def test_clean_run(self, app: BridgeApp, runner: CliRunner) -> None:
        with patch.object(app, "_run_async", new_callable=AsyncMock):
            result = runner.invoke(build_cli(app), [])

        assert result.exit_code == EXIT_OK

    @pytest.mark.parametrize(
        "args",
        [["--log-level", "verbose"], ["--log-format", "xml"], ["--poll-minutes", "0"]],
    )
    def test_invalid_flag_is_usage_error(
        self, app: BridgeApp, runner: CliRunner, args: list[str]
    ) -> None:
        with patch.object(app, "_run_async", new_callable=AsyncMock) as run:
            result = runner.invoke(build_cli(app), args)

        assert result.exit_code == 2
        run.assert_not_called()

    def test_invalid_configuration(
        self,
        app: BridgeApp,
        runner: CliRunner,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("MILLBRIDGE_MILL__POLL_MINUTES", "0")

        result = runner.invoke(build_cli(app), [])

        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_runtime_error(self, app: BridgeApp, runner: CliRunner) -> None:
        async def boom(**kwargs: object) -> None:  # noqa: ARG001
            raise RuntimeError("vendor unreachable")

        with patch.object(app, "_run_async", side_effect=boom):
            result = runner.invoke(build_cli(app), [])

        assert result.exit_code == EXIT_RUNTIME_ERROR

    def test_constants(self) -> None:
        assert (EXIT_OK, EXIT_CONFIG_ERROR, EXIT_RUNTIME_ERROR) == (0, 1, 3)

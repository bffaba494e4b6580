"""Typer command line for the bridge.

Options: ``--version``, ``--log-level``, ``--log-format``,
``--env-file`` and ``--poll-minutes``.  Exit codes:

- ``0`` — clean shutdown
- ``1`` — invalid configuration
- ``3`` — runtime failure
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from collections.abc import Callable
from typing import TYPE_CHECKING, Annotated, get_args

import typer
from pydantic import ValidationError

from millbridge._settings import LoggingSettings

if TYPE_CHECKING:
    from millbridge._app import BridgeApp
    from millbridge._settings import Settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3

_VALID_LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
_VALID_LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)


def build_cli(app: BridgeApp) -> typer.Typer:
    """Build the Typer application that launches *app*."""
    cli = typer.Typer(help=f"{app.name} v{app.version}: {app.description}")

    @cli.callback(invoke_without_command=True)
    def main(
        version_flag: Annotated[
            bool | None,
            typer.Option("--version", is_eager=True, help="Show version and exit."),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override log format."),
        ] = None,
        poll_minutes: Annotated[
            int | None,
            typer.Option("--poll-minutes", min=1, help="Override the poll interval."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to .env file."),
        ] = ".env",
    ) -> None:
        if version_flag:
            typer.echo(f"{app.name} v{app.version}")
            raise typer.Exit()

        log_level = _choice(log_level, _VALID_LOG_LEVELS, "--log-level", str.upper)
        log_format = _choice(
            log_format, _VALID_LOG_FORMATS, "--log-format", str.lower
        )

        try:
            settings: Settings = app.settings_class(_env_file=env_file)  # type: ignore[call-arg]
        except ValidationError as exc:
            logger.error("Configuration error: %s", exc)
            raise SystemExit(EXIT_CONFIG_ERROR) from exc

        _apply_overrides(settings, log_level, log_format, poll_minutes)

        try:
            with contextlib.suppress(KeyboardInterrupt):
                asyncio.run(app._run_async(settings=settings))
        except SystemExit:
            raise
        except Exception as exc:
            logger.error("Runtime error: %s", exc)
            sys.exit(EXIT_RUNTIME_ERROR)

    return cli


def _choice(
    value: str | None,
    allowed: tuple[str, ...],
    option: str,
    normalise: Callable[[str], str],
) -> str | None:
    if value is None:
        return None
    normalised = normalise(value)
    if normalised not in allowed:
        raise typer.BadParameter(
            f"Invalid value '{value}'. Choose from: {', '.join(allowed)}",
            param_hint=f"'{option}'",
        )
    return normalised


def _apply_overrides(
    settings: Settings,
    log_level: str | None,
    log_format: str | None,
    poll_minutes: int | None,
) -> None:
    """Write command-line overrides into *settings*."""
    logging_update = {
        key: value
        for key, value in (("level", log_level), ("format", log_format))
        if value is not None
    }
    if logging_update:
        settings.logging = settings.logging.model_copy(update=logging_update)
    if poll_minutes is not None:
        settings.mill = settings.mill.model_copy(update={"poll_minutes": poll_minutes})

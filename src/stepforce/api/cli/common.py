"""Helpers shared by the CLI commands."""

from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError

from stepforce.api.cli.output_formatter import console
from stepforce.application.config import ExecutorSettings
from stepforce.application.logging import configure_logging


def load_settings(ctx: typer.Context, config: Optional[Path] = None, **overrides: Any) -> ExecutorSettings:
    """Build settings from file/env plus command-line overrides and set up logging."""
    try:
        if config is not None:
            settings = ExecutorSettings.load_from_file(config, **overrides)
        else:
            settings = ExecutorSettings(**{key: value for key, value in overrides.items() if value is not None})
    except ValidationError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(1)

    verbose = (ctx.obj or {}).get("verbose", False)
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_format)
    return settings

"""Config commands -- inspect the effective project configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from plugship.output import info, print_record


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Project config file (default: plugship.json)."
    ),
) -> None:
    """Show the effective configuration after environment overrides.

    Example::

        plugship config show
        plugship config show --json
    """
    from plugship.config import find_project_config, resolve_release_config

    root = Path.cwd()
    config = resolve_release_config(root, config_path=config_path)
    info(f"Config file: {config_path or find_project_config(root)}")
    print_record(config.model_dump(mode="json"))

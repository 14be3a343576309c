"""Targets command -- list the registry with canonical artifact names."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from plugship.output import print_table


def targets_command(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Project config file (default: plugship.json)."
    ),
) -> None:
    """List registered build targets.

    Example::

        plugship targets
        plugship targets --json
    """
    from plugship.config import resolve_release_config
    from plugship.registry import TargetRegistry

    config = resolve_release_config(Path.cwd(), config_path=config_path)
    registry = TargetRegistry.from_config(config)
    rows = [
        [target.os, target.arch, target.suffix, ", ".join(target.artifact_name(b.name) for b in config.binaries)]
        for target in registry
    ]
    print_table(["os", "arch", "suffix", "artifacts"], rows, title="Targets")

"""Shim commands -- render a dispatch shim or trace a resolution.

``plugship shim render`` writes the POSIX ``sh`` dispatch shim for one
logical binary. ``plugship shim resolve`` runs the same table-driven state
machine in Python for a given kernel-name / machine pair and reports every
state it passed through; it exits 127 when the pair cannot be resolved,
exactly like the shim.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from plugship.output import error, print_record, success


shim_app = typer.Typer(no_args_is_help=True)


def _load_tables(config_path: Optional[Path]):
    """Return ``(dispatch tables, default binary name)`` from the project config, if any."""
    from plugship.config import find_project_config, load_release_config
    from plugship.models import DispatchConfig

    path = config_path or find_project_config(Path.cwd())
    if path is None:
        return DispatchConfig(), None
    config = load_release_config(path)
    return config.dispatch, config.binaries[0].name


@shim_app.command("render")
def shim_render(
    name: Optional[str] = typer.Option(None, "--name", help="Logical binary name."),
    output_dir: Path = typer.Option(Path("."), "--output", "-o", help="Directory to write the shim into."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Project config file."),
) -> None:
    """Write the dispatch shim for a binary.

    Example::

        plugship shim render --name tool --output dist/bin
    """
    from plugship.dispatch import write_shim
    from plugship.exceptions import InvalidUsageError

    tables, default_name = _load_tables(config_path)
    name = name or default_name
    if not name:
        raise InvalidUsageError("--name is required when no project config is present")
    path = write_shim(name, output_dir, tables)
    success(f"Wrote {path}")


@shim_app.command("resolve")
def shim_resolve(
    kernel: Optional[str] = typer.Option(None, "--kernel", help="Kernel-name report (uname -s); host when omitted."),
    machine: Optional[str] = typer.Option(None, "--machine", help="Machine-hardware report (uname -m); host when omitted."),
    name: Optional[str] = typer.Option(None, "--name", help="Logical binary name."),
    directory: Path = typer.Option(Path("."), "--dir", "-d", help="Directory holding the artifacts."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Project config file."),
) -> None:
    """Trace how a platform pair resolves to an artifact.

    Raises:
        typer.Exit: With code 127 when the pair is unmapped or the artifact
            is missing.

    Example::

        plugship shim resolve --kernel Linux --machine aarch64 --name tool --dir dist/bin
    """
    from plugship.dispatch import DispatchResolver
    from plugship.exit_codes import EXIT_DISPATCH_UNRESOLVED

    tables, default_name = _load_tables(config_path)
    resolver = DispatchResolver(name or default_name or "plugin", directory, tables)
    res = resolver.resolve(kernel, machine)
    print_record(
        {
            "kernel_name": res.kernel_name,
            "machine": res.machine,
            "os": res.os_token,
            "arch": res.arch_token,
            "path": str(res.path) if res.path is not None else None,
            "states": [s.value for s in res.states],
        }
    )
    if not res.resolved:
        error(str(resolver.failure(res)))
        raise typer.Exit(code=EXIT_DISPATCH_UNRESOLVED)

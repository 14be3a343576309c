"""Verify command -- check a distribution tree against its manifest."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from plugship.output import error, success


def verify_command(
    directory: Path = typer.Argument(help="Distribution tree or its bin directory."),
    manifest_name: str = typer.Option("checksums.txt", "--manifest", help="Manifest file name."),
    bin_dir: Optional[str] = typer.Option("bin", "--bin-dir", help="Binary directory inside the tree."),
) -> None:
    """Verify artifact checksums in a distribution tree.

    Looks for the manifest in *directory* first, then in
    ``<directory>/<bin-dir>``.

    Raises:
        typer.Exit: With code 1 if the manifest is missing or any file
            fails verification.
    """
    from plugship.checksums import parse_manifest, verify_directory

    base = directory
    if not (base / manifest_name).is_file() and bin_dir:
        base = directory / bin_dir
    manifest_path = base / manifest_name
    if not manifest_path.is_file():
        error(f"Manifest not found: {manifest_name} in {directory}")
        raise typer.Exit(code=1)

    try:
        manifest = parse_manifest(manifest_path.read_text(encoding="utf-8"))
    except ValueError as exc:
        error(f"Invalid manifest {manifest_path}: {exc}")
        raise typer.Exit(code=1)

    problems = verify_directory(base, manifest, ignore=[manifest_name])
    if problems:
        for problem in problems:
            error(problem)
        raise typer.Exit(code=1)
    success(f"{len(manifest.entries)} artifacts verified against {manifest_path}")

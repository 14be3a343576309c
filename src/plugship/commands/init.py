"""Init command -- scaffold a release configuration.

Writes ``plugship.json`` with the default target matrix for the project and
a tag-triggered GitHub Actions workflow. The workflow sets a concurrency
group per distribution branch so two publishes never race on the same
branch.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

import typer
from jinja2 import Environment, FileSystemLoader, select_autoescape

from plugship.output import debug, error, info, success, suggest


TEMPLATE_DIR = Path(__file__).parent / "templates"

WORKFLOW_PATH = Path(".github") / "workflows" / "release.yml"


def _slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9._-]+", "-", value.lower()).strip("-._")
    return slug or "plugin"


def render_workflow(branch: str = "dist", tag_pattern: str = "v*") -> str:
    """Render the release workflow for *branch*."""
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(disabled_extensions=("j2",)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    return env.get_template("release.yml.j2").render(branch=branch, tag_pattern=tag_pattern)


def init_command(
    name: Optional[str] = typer.Option(
        None, "--name", help="Binary name (defaults to the directory name)."
    ),
    repository: Optional[str] = typer.Option(
        None, "--repository", help="owner/name of the release repository."
    ),
    branch: str = typer.Option("dist", "--branch", help="Distribution branch name."),
    workflow: bool = typer.Option(
        True, "--workflow/--no-workflow", help="Also write the release workflow."
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing files."),
) -> None:
    """Create ``plugship.json`` and a release workflow in the current directory.

    Raises:
        typer.Exit: With code 1 if a file exists and ``--force`` is not set.

    Example::

        plugship init --name tool --repository acme/tool
    """
    from plugship.config import PROJECT_CONFIG_FILENAMES, atomic_write, save_release_config
    from plugship.exceptions import ConfigError
    from plugship.models import PublishConfig, ReleaseConfig

    root = Path.cwd()
    config_file = root / PROJECT_CONFIG_FILENAMES[0]
    workflow_file = root / WORKFLOW_PATH

    existing = [p for p in (config_file, workflow_file if workflow else None) if p and p.exists()]
    if existing and not force:
        for path in existing:
            error(f"{path.relative_to(root)} already exists")
        suggest("Use --force to overwrite")
        raise typer.Exit(code=1)

    binary = _slugify(name or root.name)
    try:
        config = ReleaseConfig(
            name=binary,
            publish=PublishConfig(repository=repository, branch=branch),
        )
    except ValueError as exc:
        raise ConfigError(f"Invalid init options: {exc}") from exc
    debug(f"Scaffolding release config for {binary}")

    save_release_config(config, config_file)
    success(f"Wrote {config_file.relative_to(root)}")

    if workflow:
        workflow_file.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(workflow_file, render_workflow(branch=branch))
        success(f"Wrote {workflow_file.relative_to(root)}")

    info(f"Targets: {', '.join(t.suffix for t in config.targets)}")
    suggest("Review the build and stage sections, then push a tag like v0.1.0")

"""Release command -- run the full pipeline for one tag.

The tag comes from ``--tag`` (or ``PLUGSHIP_TAG``) for a manual
re-dispatch, or from ``GITHUB_REF`` when triggered by a tag push. On
success the pinning descriptor is printed to stdout (and optionally written
to ``--pin-file``); on failure the process exits with the failing phase's
exit code.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

import typer

from plugship.output import print_record, suggest


def release_command(
    tag: Optional[str] = typer.Option(
        None, "--tag", "-t", envvar="PLUGSHIP_TAG", help="Release tag (manual re-dispatch)."
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Project config file (default: plugship.json)."
    ),
    repo: Path = typer.Option(
        Path("."), "--repo", help="Source repository directory."
    ),
    repository: Optional[str] = typer.Option(
        None, "--repository", help="owner/name of the release repository."
    ),
    branch: Optional[str] = typer.Option(
        None, "--branch", help="Distribution branch name."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n", help="Run every phase without remote writes."
    ),
    keep_work: bool = typer.Option(
        False, "--keep-work", help="Keep the work directory after the run."
    ),
    work_dir: Optional[Path] = typer.Option(
        None, "--work-dir", help="Parent directory for the run's scratch space."
    ),
    pin_file: Optional[Path] = typer.Option(
        None, "--pin-file", help="Also write the pinning descriptor to this file."
    ),
) -> None:
    """Build, stage and publish a release for a tag.

    Example::

        plugship release --tag v1.2.0
        plugship release --dry-run --keep-work
    """
    from plugship.config import atomic_write, resolve_release_config
    from plugship.exceptions import PublishFailure, StagingFailure, TestGateFailure
    from plugship.pipeline import Orchestrator

    root = repo.resolve()
    config = resolve_release_config(
        root, config_path=config_path, cli_repository=repository, cli_branch=branch
    )
    orchestrator = Orchestrator(
        config,
        root,
        work_dir=work_dir,
        dry_run=dry_run,
        keep_work=keep_work,
    )
    run = orchestrator.run(tag=tag, event_ref=os.environ.get("GITHUB_REF"))

    if run.failure is not None:
        if isinstance(run.failure, TestGateFailure):
            suggest("Fix the failing tests and re-run for the same tag")
        elif isinstance(run.failure, StagingFailure) and run.failure.missing:
            suggest(f"Add the missing files to the tagged commit: {', '.join(run.failure.missing)}")
        elif isinstance(run.failure, PublishFailure) and not run.failure.retryable:
            suggest("Check the token's permissions and the distribution branch protection rules")
        raise typer.Exit(code=run.failure.exit_code)

    assert run.pin is not None and run.release is not None
    record = run.pin.model_dump()
    record["tag"] = run.release.tag
    record["assets"] = run.release.assets
    record["dry_run"] = run.release.dry_run
    if run.release.url:
        record["url"] = run.release.url
    print_record(record)
    if pin_file is not None:
        atomic_write(pin_file, json.dumps(run.pin.model_dump(), indent=2) + "\n")

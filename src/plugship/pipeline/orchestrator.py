"""Pipeline Orchestrator -- one release run, phase by phase.

States::

    IDLE -> TAG_RESOLVED -> TEST_GATE_PASSED -> BUILT -> STAGED -> PUBLISHED -> DONE
      \\___________\\_______________\\____________\\_______\\__________\\-> FAILED

Every phase runs against a detached worktree checked out at the tag's
commit, never the caller's working copy. A phase failure ends the run in
``FAILED`` with the :class:`~plugship.exceptions.PlugshipError` that caused
it; nothing is published unless every earlier phase succeeded. The work
directory (worktree, artifacts, tree) is removed at the end of the run
unless ``keep_work`` is set.

Re-running for the same tag is a fresh run: every phase executes again and
a successful publish replaces the previous snapshot.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional

from plugship.build import BuildMatrixExecutor
from plugship.config import credential_env_var, repository_from_remote_url, resolve_credential
from plugship.exceptions import ConfigError, PlugshipError, TagResolutionError, TestGateFailure
from plugship.models import (
    Artifact,
    DistributionTree,
    PinningDescriptor,
    PipelineState,
    PublishedRelease,
    ReleaseConfig,
)
from plugship.output import debug, error, phase, success
from plugship.pipeline.tags import resolve_tag, version_from_tag
from plugship.publish import Git, GitCommandError, Publisher, ReleaseClient
from plugship.registry import TargetRegistry
from plugship.stage import ReleaseStager

_GATE_TAIL_LINES = 40

_TRANSITIONS: dict[PipelineState, PipelineState] = {
    PipelineState.IDLE: PipelineState.TAG_RESOLVED,
    PipelineState.TAG_RESOLVED: PipelineState.TEST_GATE_PASSED,
    PipelineState.TEST_GATE_PASSED: PipelineState.BUILT,
    PipelineState.BUILT: PipelineState.STAGED,
    PipelineState.STAGED: PipelineState.PUBLISHED,
    PipelineState.PUBLISHED: PipelineState.DONE,
}


@dataclass
class PipelineRun:
    """Outcome of :meth:`Orchestrator.run`.

    ``artifacts`` and ``tree`` point into the work directory and are only
    meaningful when the run was started with ``keep_work``.
    """

    tag: Optional[str] = None
    commit: Optional[str] = None
    state: PipelineState = PipelineState.IDLE
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    failure: Optional[PlugshipError] = None
    failed_phase: Optional[PipelineState] = None
    artifacts: list[Artifact] = field(default_factory=list)
    tree: Optional[DistributionTree] = None
    release: Optional[PublishedRelease] = None
    pin: Optional[PinningDescriptor] = None

    @property
    def ok(self) -> bool:
        return self.state == PipelineState.DONE

    def advance(self, state: PipelineState) -> None:
        """Move to *state*; only the next state in sequence or ``FAILED`` is allowed."""
        if self.state in (PipelineState.DONE, PipelineState.FAILED):
            raise RuntimeError(f"Run already finished in state {self.state.value}")
        if state != PipelineState.FAILED and _TRANSITIONS.get(self.state) != state:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


class Orchestrator:
    """Sequence tag resolution, test gate, build, stage and publish.

    Args:
        config: Effective release configuration.
        repo_dir: Source repository holding the release tag.
        work_dir: Parent of the per-run scratch directory; the system
            temporary directory when omitted.
        dry_run: Run every phase but make no remote writes.
        keep_work: Leave the work directory in place after the run.
        client_factory: Builds the release API client; defaults to a
            :class:`ReleaseClient` authenticated from ``publish.token_source``.
        environ: Base environment for the gate and the compiler.
        sleep: Backoff delay function for publish retries.
    """

    def __init__(
        self,
        config: ReleaseConfig,
        repo_dir: Path,
        work_dir: Optional[Path] = None,
        dry_run: bool = False,
        keep_work: bool = False,
        client_factory: Optional[Callable[[], ReleaseClient]] = None,
        environ: Optional[Mapping[str, str]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.repo_dir = Path(repo_dir).resolve()
        self.work_dir = Path(work_dir) if work_dir else None
        self.dry_run = dry_run
        self.keep_work = keep_work
        self.client_factory = client_factory
        self.environ = dict(os.environ if environ is None else environ)
        self._sleep = sleep
        self.git = Git(self.repo_dir)
        self.registry = TargetRegistry.from_config(config)

    def run(self, tag: Optional[str] = None, event_ref: Optional[str] = None) -> PipelineRun:
        """Execute one release run.

        Phase failures are returned in :attr:`PipelineRun.failure`, never
        raised. Unexpected exceptions propagate after cleanup.
        """
        result = PipelineRun()
        work = self._make_work_dir()
        source = work / "source"
        worktree_added = False
        try:
            result.tag = resolve_tag(tag, event_ref)
            result.commit = self._tag_commit(result.tag)
            repository = self._repository()
            client_factory = self._client_factory(repository)
            phase("tag", f"{result.tag} -> {result.commit[:12]}")
            try:
                self.git.add_worktree(source, result.commit)
            except GitCommandError as exc:
                raise TagResolutionError(f"Cannot check out {result.tag}: {exc}") from exc
            worktree_added = True
            result.advance(PipelineState.TAG_RESOLVED)

            self._run_gate(source)
            result.advance(PipelineState.TEST_GATE_PASSED)

            targets = self.registry.list_targets()
            phase("build", f"{len(self.config.binaries)} binaries x {len(targets)} targets")
            executor = BuildMatrixExecutor(
                self.config.build,
                source,
                work / "artifacts",
                version=version_from_tag(result.tag),
                environ=self.environ,
                scrub=self._scrub_names(),
            )
            result.artifacts = executor.build_all(self.config.binaries, targets)
            result.advance(PipelineState.BUILT)

            phase("stage", f"Assembling distribution tree ({len(result.artifacts)} artifacts)")
            stager = ReleaseStager(self.config.stage, self.config.dispatch, source)
            result.tree = stager.stage(result.artifacts, self.config.binaries, work / "tree")
            result.advance(PipelineState.STAGED)

            target = "dry run" if self.dry_run else f"{repository} ({self.config.publish.branch})"
            phase("publish", target)
            publisher = Publisher(
                self.config.publish,
                self.git,
                repository,
                client_factory=client_factory,
                dry_run=self.dry_run,
                sleep=self._sleep,
            )
            result.release = publisher.publish(result.tree, result.tag)
            result.advance(PipelineState.PUBLISHED)

            result.pin = PinningDescriptor(
                repository=repository,
                ref=result.release.branch,
                sha=result.release.content_hash,
            )
            result.advance(PipelineState.DONE)
            success(f"Released {result.tag} as {result.pin.ref}@{result.pin.sha}")
        except PlugshipError as exc:
            result.failure = exc
            result.failed_phase = result.state
            result.advance(PipelineState.FAILED)
            error(f"Release failed after {result.failed_phase.value}: {exc}")
        finally:
            self._cleanup(work, source if worktree_added else None)
        return result

    # ------------------------------------------------------------------ #
    # Phases
    # ------------------------------------------------------------------ #

    def _tag_commit(self, tag: str) -> str:
        commit = self.git.tag_commit(tag)
        if commit is None:
            raise TagResolutionError(f"Tag {tag!r} not found in {self.repo_dir}")
        return commit

    def _run_gate(self, source: Path) -> None:
        gate = self.config.gate
        phase("gate", " ".join(gate.command))
        scrub = set(self.config.build.scrub_env) | set(self._scrub_names())
        env = {k: v for k, v in self.environ.items() if k not in scrub}
        try:
            result = subprocess.run(
                gate.command,
                cwd=source,
                env=env,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=gate.timeout,
            )
        except subprocess.TimeoutExpired:
            raise TestGateFailure(f"Test gate timed out after {gate.timeout}s") from None
        except OSError as exc:
            raise TestGateFailure(f"Cannot run test gate {gate.command[0]!r}: {exc}") from exc

        output = (result.stdout + result.stderr).strip()
        if result.returncode != 0:
            tail = "\n".join(output.splitlines()[-_GATE_TAIL_LINES:])
            message = f"Test gate exited with status {result.returncode}"
            raise TestGateFailure(f"{message}\n{tail}" if tail else message)
        debug(output or "Test gate produced no output")

    # ------------------------------------------------------------------ #
    # Collaborators
    # ------------------------------------------------------------------ #

    def _repository(self) -> str:
        repository = self.config.publish.repository
        if repository:
            return repository
        url = self.git.remote_url(self.config.publish.remote)
        remote = self.config.publish.remote
        if url is None and ("/" in remote or ":" in remote):
            url = remote
        repository = repository_from_remote_url(url) if url else None
        if repository:
            return repository
        if self.dry_run:
            return self.repo_dir.name
        raise ConfigError(
            "Cannot determine the release repository; set publish.repository "
            "or GITHUB_REPOSITORY"
        )

    def _client_factory(self, repository: str) -> Optional[Callable[[], ReleaseClient]]:
        if self.client_factory is not None or self.dry_run:
            return self.client_factory
        publish = self.config.publish
        token = resolve_credential(publish.token_source)
        return lambda: ReleaseClient(
            repository,
            token,
            api_url=publish.api_url,
            timeout=publish.timeout,
            max_retries=publish.max_retries,
        )

    def _scrub_names(self) -> list[str]:
        name = credential_env_var(self.config.publish.token_source)
        return [name] if name else []

    # ------------------------------------------------------------------ #
    # Work directory
    # ------------------------------------------------------------------ #

    def _make_work_dir(self) -> Path:
        if self.work_dir is not None:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="plugship-", dir=self.work_dir))

    def _cleanup(self, work: Path, worktree: Optional[Path]) -> None:
        if self.keep_work:
            phase("cleanup", f"Keeping work directory {work}")
            return
        if worktree is not None:
            try:
                self.git.remove_worktree(worktree)
            except GitCommandError as exc:
                debug(f"Could not remove worktree {worktree}: {exc}")
        shutil.rmtree(work, ignore_errors=True)

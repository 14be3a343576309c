"""Publisher -- replace the distribution branch and create the release.

A publish is one snapshot commit plus one release object, written in an
order that keeps the visible state all-or-nothing:

1. Commit the tree as a parentless snapshot (local only).
2. Create the release as a **draft** and upload every asset to it.
3. Force-push the snapshot to the distribution branch and read the branch
   head back to confirm it.
4. Delete the release previously published for the tag, if any.
5. Publish the draft, recording the snapshot hash in its notes.

Anything failing before step 4 completes deletes the draft and leaves the
previous release in place; the branch has not moved or is rolled back to
its previous head. A failure in step 5 rolls the branch back as well.
Permission failures are never retried; transient ones are retried
``publish.max_retries`` times with exponential backoff.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from plugship.exceptions import PublishFailure, PublishFailureKind
from plugship.models import DistributionTree, PublishConfig, PublishedRelease
from plugship.output import debug, info, warning
from plugship.publish.git import Git, GitCommandError, Snapshot
from plugship.publish.github import ReleaseClient

T = TypeVar("T")

# Substrings of git stderr that mean retrying cannot help.
_PERMISSION_MARKERS = (
    "protected branch",
    "permission denied",
    "permission to",
    "authentication failed",
    "could not read username",
    "invalid username or password",
    "pre-receive hook declined",
    "the requested url returned error: 403",
    "gh006",
)


def classify_git_error(exc: GitCommandError) -> PublishFailureKind:
    """Map a failed git remote command to a failure kind.

    Unrecognised errors are treated as transient.
    """
    text = exc.stderr.lower()
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return PublishFailureKind.PERMISSION
    return PublishFailureKind.TRANSIENT


class Publisher:
    """Publish a :class:`~plugship.models.DistributionTree` for one tag.

    Args:
        config: Branch, remote, retry and release policy settings.
        git: Git wrapper bound to the repository that owns the snapshot.
        repository: ``owner/name`` identity of the release repository.
        client_factory: Returns a fresh :class:`ReleaseClient`; unused on a
            dry run.
        dry_run: Commit the snapshot locally but write nothing remote.
        sleep: Backoff delay function.
    """

    def __init__(
        self,
        config: PublishConfig,
        git: Git,
        repository: str,
        client_factory: Optional[Callable[[], ReleaseClient]] = None,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.git = git
        self.repository = repository
        self.client_factory = client_factory
        self.dry_run = dry_run
        self._sleep = sleep

    def publish(self, tree: DistributionTree, tag: str) -> PublishedRelease:
        """Replace the distribution branch with *tree* and release it as *tag*.

        Raises:
            PublishFailure: Classified as transient or permission.
        """
        assets = [p.name for p in tree.asset_paths]
        snapshot = self.git.snapshot(
            tree.root,
            message=f"Release {tag}",
            author_name=self.config.commit_name,
            author_email=self.config.commit_email,
        )
        debug(f"Snapshot {snapshot.commit} (tree {snapshot.tree})")

        if self.dry_run:
            info(f"Dry run: would push {snapshot.commit[:12]} to {self.config.branch}")
            return PublishedRelease(
                tag=tag,
                content_hash=snapshot.commit,
                branch=self.config.branch,
                assets=assets,
                dry_run=True,
            )

        if self.client_factory is None:
            raise PublishFailure("No release client configured", kind=PublishFailureKind.PERMISSION)

        previous = self._with_retry(
            "read distribution branch",
            lambda: self.git.ls_remote_head(self.config.remote, self.config.branch, self.config.timeout),
        )
        push_needed = not self._identical(previous, snapshot)
        content_hash = snapshot.commit if push_needed else previous
        assert content_hash is not None

        with self.client_factory() as client:
            existing = self._existing_release(client, tag)
            release = self._create_draft(client, tag)
            pushed = False
            try:
                for path in tree.asset_paths:
                    self._upload(client, release, path)
                if push_needed:
                    self._push(snapshot.commit)
                    pushed = True
                    self._verify(snapshot.commit)
                if existing is not None:
                    info(f"Replacing existing release {tag}")
                    client.delete_release(existing["id"])
            except Exception:
                if pushed:
                    self._rollback(previous)
                self._discard_draft(client, release)
                raise

            try:
                final = client.update_release(
                    release["id"],
                    draft=False,
                    body=self._release_body(release, content_hash),
                )
            except PublishFailure:
                if push_needed:
                    self._rollback(previous)
                self._discard_draft(client, release)
                raise

        return PublishedRelease(
            tag=tag,
            content_hash=content_hash,
            branch=self.config.branch,
            assets=assets,
            url=final.get("html_url"),
        )

    # ------------------------------------------------------------------ #
    # Branch
    # ------------------------------------------------------------------ #

    def _identical(self, previous: Optional[str], snapshot: Snapshot) -> bool:
        if previous is None or self.config.republish != "skip-identical":
            return False
        self._with_retry(
            "fetch distribution branch",
            lambda: self.git.fetch_commit(self.config.remote, self.config.branch, self.config.timeout),
        )
        if self.git.tree_of(previous) == snapshot.tree:
            info(f"Content unchanged; keeping {self.config.branch} at {previous[:12]}")
            return True
        return False

    def _push(self, commit: str) -> None:
        remote, branch = self.config.remote, self.config.branch
        self._with_retry(
            f"push {branch}",
            lambda: self.git.force_push(remote, commit, branch, self.config.timeout),
        )

    def _verify(self, commit: str) -> None:
        remote, branch = self.config.remote, self.config.branch
        head = self._with_retry(
            f"verify {branch}",
            lambda: self.git.ls_remote_head(remote, branch, self.config.timeout),
        )
        if head != commit:
            raise PublishFailure(
                f"Branch {branch} points to {head or 'nothing'} after push, expected {commit}"
            )
        info(f"Pushed {commit[:12]} to {branch}")

    def _rollback(self, previous: Optional[str]) -> None:
        remote, branch = self.config.remote, self.config.branch
        try:
            if previous is None:
                self.git.delete_remote_branch(remote, branch, self.config.timeout)
            else:
                self.git.force_push(remote, previous, branch, self.config.timeout)
        except GitCommandError as exc:
            warning(f"Could not restore {branch} to {previous or 'absent'}: {exc}")
        else:
            debug(f"Restored {branch} to {previous or 'absent'}")

    def _with_retry(self, action: str, func: Callable[[], T]) -> T:
        for attempt in range(self.config.max_retries + 1):
            try:
                return func()
            except GitCommandError as exc:
                kind = classify_git_error(exc)
                if kind == PublishFailureKind.PERMISSION or attempt >= self.config.max_retries:
                    raise PublishFailure(f"Could not {action}: {exc}", kind=kind) from exc
                delay = 2 ** attempt
                debug(f"{action} failed, retrying in {delay}s (attempt {attempt + 1}/{self.config.max_retries})")
                self._sleep(delay)
        raise PublishFailure(f"Could not {action}")  # pragma: no cover

    # ------------------------------------------------------------------ #
    # Release
    # ------------------------------------------------------------------ #

    def _existing_release(self, client: ReleaseClient, tag: str) -> Optional[dict[str, Any]]:
        existing = client.get_release_by_tag(tag)
        if existing is not None and self.config.existing_release == "fail":
            raise PublishFailure(
                f"Release {tag} already exists", kind=PublishFailureKind.PERMISSION
            )
        return existing

    def _create_draft(self, client: ReleaseClient, tag: str) -> dict[str, Any]:
        return client.create_release(
            tag,
            draft=True,
            generate_notes=self.config.generate_notes and not self.config.notes,
            body=self.config.notes,
        )

    @staticmethod
    def _upload(client: ReleaseClient, release: dict[str, Any], path: Path) -> None:
        client.upload_asset(release, path)
        debug(f"Uploaded {path.name}")

    def _release_body(self, release: dict[str, Any], content_hash: str) -> str:
        notes = (release.get("body") or "").rstrip()
        pin = f"Distribution snapshot: `{self.config.branch}@{content_hash}`"
        return f"{notes}\n\n{pin}\n" if notes else f"{pin}\n"

    @staticmethod
    def _discard_draft(client: ReleaseClient, release: dict[str, Any]) -> None:
        try:
            client.delete_release(release["id"])
        except PublishFailure as exc:
            warning(f"Could not delete draft release {release.get('id')}: {exc}")

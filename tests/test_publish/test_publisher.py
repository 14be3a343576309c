"""Tests for plugship.publish.publisher -- all-or-nothing publishing."""

from __future__ import annotations

from pathlib import Path

import pytest

from plugship.build import BuildMatrixExecutor
from plugship.exceptions import PublishFailure, PublishFailureKind
from plugship.models import DistributionTree, PublishConfig
from plugship.publish import Git, GitCommandError, Publisher, classify_git_error
from plugship.stage import ReleaseStager


@pytest.fixture
def dist_tree(plugin_repo: Path, tmp_path: Path, make_config) -> DistributionTree:
    config = make_config()
    artifacts = BuildMatrixExecutor(config.build, plugin_repo, tmp_path / "artifacts").build_all(
        config.binaries, config.targets
    )
    return ReleaseStager(config.stage, config.dispatch, plugin_repo).stage(
        artifacts, config.binaries, tmp_path / "tree"
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


def _publisher(plugin_repo: Path, release_api, sleeps, git=None, **settings) -> Publisher:
    config = PublishConfig(repository="acme/tool", max_retries=2, **settings)
    return Publisher(
        config,
        git or Git(plugin_repo),
        "acme/tool",
        client_factory=release_api.client_factory(),
        sleep=sleeps.append,
    )


def _branch_head(plugin_repo: Path) -> str | None:
    return Git(plugin_repo).ls_remote_head("origin", "dist")


def _reject_pushes(remote_repo: Path, message: str) -> None:
    (remote_repo / "hooks").mkdir(exist_ok=True)
    hook = remote_repo / "hooks" / "pre-receive"
    hook.write_text(f"#!/bin/sh\necho '{message}' >&2\nexit 1\n")
    hook.chmod(0o755)


class FlakyPushGit(Git):
    """Fails the first *failures* pushes with a network-style error."""

    def __init__(self, repo_dir: Path, failures: int) -> None:
        super().__init__(repo_dir)
        self.failures = failures
        self.pushes = 0

    def force_push(self, remote, commit, branch, timeout=None):
        self.pushes += 1
        if self.pushes <= self.failures:
            raise GitCommandError(["push"], 128, "fatal: unable to access: Could not resolve host\n")
        super().force_push(remote, commit, branch, timeout)


class TestClassifyGitError:
    @pytest.mark.parametrize(
        "stderr",
        [
            "remote: error: GH006: Protected branch update failed for refs/heads/dist.",
            "fatal: Authentication failed for 'https://github.com/acme/tool.git/'",
            "remote: Permission to acme/tool.git denied to bot.",
            " ! [remote rejected] dist -> dist (pre-receive hook declined)",
        ],
    )
    def test_permission(self, stderr: str) -> None:
        assert classify_git_error(GitCommandError(["push"], 1, stderr)) == PublishFailureKind.PERMISSION

    @pytest.mark.parametrize(
        "stderr",
        [
            "fatal: unable to access 'https://github.com/': Could not resolve host: github.com",
            "error: RPC failed; curl 56 Recv failure: Connection reset by peer",
            "",
        ],
    )
    def test_transient(self, stderr: str) -> None:
        assert classify_git_error(GitCommandError(["push"], 128, stderr)) == PublishFailureKind.TRANSIENT


class TestPublish:
    def test_first_publish(self, plugin_repo: Path, dist_tree, release_api, sleeps, git) -> None:
        release = _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")

        assert _branch_head(plugin_repo) == release.content_hash
        assert release.branch == "dist"
        assert release.url.endswith("/releases/tag/v1.0.0")
        assert len(release.assets) == 6

        [published] = release_api.published()
        assert published["tag_name"] == "v1.0.0"
        assert sorted(release_api.assets[published["id"]]) == sorted(release.assets)
        assert f"Distribution snapshot: `dist@{release.content_hash}`" in published["body"]
        assert published["body"].startswith("## What's Changed")

        files = git(plugin_repo, "ls-tree", "-r", "--name-only", release.content_hash).splitlines()
        assert "bin/tool" in files
        assert not any(f.endswith(".go") or f == ".env" for f in files)

    def test_operator_notes(self, plugin_repo: Path, dist_tree, release_api, sleeps) -> None:
        _publisher(plugin_repo, release_api, sleeps, notes="Hand-written notes").publish(dist_tree, "v1.0.0")
        [published] = release_api.published()
        assert published["body"].startswith("Hand-written notes\n\nDistribution snapshot:")

    def test_republish_replaces_release_and_branch(
        self, plugin_repo: Path, dist_tree, release_api, sleeps, git, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("GIT_COMMITTER_DATE", "2024-01-01T00:00:00Z")
        first = _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")
        monkeypatch.setenv("GIT_COMMITTER_DATE", "2024-01-02T00:00:00Z")
        second = _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")

        assert second.content_hash != first.content_hash
        assert _branch_head(plugin_repo) == second.content_hash
        assert len(release_api.published()) == 1
        assert git(plugin_repo, "rev-list", "--count", second.content_hash) == "1"

    def test_skip_identical_keeps_branch(self, plugin_repo: Path, dist_tree, release_api, sleeps, monkeypatch) -> None:
        monkeypatch.setenv("GIT_COMMITTER_DATE", "2024-01-01T00:00:00Z")
        first = _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")
        monkeypatch.setenv("GIT_COMMITTER_DATE", "2024-01-02T00:00:00Z")
        second = _publisher(plugin_repo, release_api, sleeps, republish="skip-identical").publish(
            dist_tree, "v1.0.0"
        )
        assert second.content_hash == first.content_hash
        assert _branch_head(plugin_repo) == first.content_hash
        assert f"dist@{first.content_hash}" in release_api.published()[0]["body"]

    def test_existing_release_fail_policy(self, plugin_repo: Path, dist_tree, release_api, sleeps) -> None:
        first = _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")
        with pytest.raises(PublishFailure) as exc_info:
            _publisher(plugin_repo, release_api, sleeps, existing_release="fail").publish(dist_tree, "v1.0.0")
        assert exc_info.value.kind == PublishFailureKind.PERMISSION
        assert _branch_head(plugin_repo) == first.content_hash
        assert len(release_api.releases) == 1

    def test_dry_run_writes_nothing_remote(self, plugin_repo: Path, dist_tree, release_api, git) -> None:
        publisher = Publisher(PublishConfig(), Git(plugin_repo), "acme/tool", dry_run=True)
        release = publisher.publish(dist_tree, "v1.0.0")
        assert release.dry_run
        assert _branch_head(plugin_repo) is None
        assert release_api.calls == []
        assert git(plugin_repo, "cat-file", "-t", release.content_hash) == "commit"

    def test_no_client_is_permission_failure(self, plugin_repo: Path, dist_tree) -> None:
        publisher = Publisher(PublishConfig(), Git(plugin_repo), "acme/tool")
        with pytest.raises(PublishFailure) as exc_info:
            publisher.publish(dist_tree, "v1.0.0")
        assert exc_info.value.kind == PublishFailureKind.PERMISSION


class TestFailureHandling:
    def test_protected_branch_deletes_draft(
        self, plugin_repo: Path, remote_repo: Path, dist_tree, release_api, sleeps
    ) -> None:
        _reject_pushes(remote_repo, "GH006: Protected branch update failed")
        with pytest.raises(PublishFailure) as exc_info:
            _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")

        assert exc_info.value.kind == PublishFailureKind.PERMISSION
        assert exc_info.value.exit_code == 8
        assert release_api.releases == {}
        assert _branch_head(plugin_repo) is None
        assert sleeps == []

    def test_previous_release_survives_push_failure(
        self, plugin_repo: Path, remote_repo: Path, dist_tree, release_api, sleeps, monkeypatch
    ) -> None:
        monkeypatch.setenv("GIT_COMMITTER_DATE", "2024-01-01T00:00:00Z")
        first = _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")
        _reject_pushes(remote_repo, "protected branch")
        monkeypatch.setenv("GIT_COMMITTER_DATE", "2024-01-02T00:00:00Z")
        with pytest.raises(PublishFailure):
            _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.1.0")
        assert _branch_head(plugin_repo) == first.content_hash
        assert [r["tag_name"] for r in release_api.releases.values()] == ["v1.0.0"]

    def test_same_tag_release_survives_push_failure(
        self, plugin_repo: Path, remote_repo: Path, dist_tree, release_api, sleeps, monkeypatch
    ) -> None:
        monkeypatch.setenv("GIT_COMMITTER_DATE", "2024-01-01T00:00:00Z")
        first = _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")
        (original_id,) = [r["id"] for r in release_api.published()]
        _reject_pushes(remote_repo, "protected branch")
        monkeypatch.setenv("GIT_COMMITTER_DATE", "2024-01-02T00:00:00Z")
        with pytest.raises(PublishFailure):
            _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")
        assert _branch_head(plugin_repo) == first.content_hash
        assert [r["id"] for r in release_api.published()] == [original_id]
        assert release_api.assets[original_id]

    def test_same_tag_release_survives_upload_failure(
        self, plugin_repo: Path, dist_tree, release_api, sleeps
    ) -> None:
        first = _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")
        release_api.fail[("POST", "upload")] = 422
        with pytest.raises(PublishFailure):
            _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")
        assert _branch_head(plugin_repo) == first.content_hash
        assert [r["tag_name"] for r in release_api.published()] == ["v1.0.0"]
        assert len(release_api.releases) == 1

    def test_transient_push_retried(self, plugin_repo: Path, dist_tree, release_api, sleeps) -> None:
        flaky = FlakyPushGit(plugin_repo, failures=2)
        release = _publisher(plugin_repo, release_api, sleeps, git=flaky).publish(dist_tree, "v1.0.0")
        assert flaky.pushes == 3
        assert sleeps == [1, 2]
        assert _branch_head(plugin_repo) == release.content_hash

    def test_transient_push_exhausted(self, plugin_repo: Path, dist_tree, release_api, sleeps) -> None:
        flaky = FlakyPushGit(plugin_repo, failures=5)
        with pytest.raises(PublishFailure) as exc_info:
            _publisher(plugin_repo, release_api, sleeps, git=flaky).publish(dist_tree, "v1.0.0")
        assert exc_info.value.retryable
        assert exc_info.value.exit_code == 7
        assert flaky.pushes == 3
        assert release_api.releases == {}

    def test_finalise_failure_rolls_branch_back(
        self, plugin_repo: Path, dist_tree, release_api, sleeps, monkeypatch
    ) -> None:
        monkeypatch.setenv("GIT_COMMITTER_DATE", "2024-01-01T00:00:00Z")
        first = _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")
        release_api.fail[("PATCH", "release")] = 403
        monkeypatch.setenv("GIT_COMMITTER_DATE", "2024-01-02T00:00:00Z")
        with pytest.raises(PublishFailure):
            _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.1.0")
        assert _branch_head(plugin_repo) == first.content_hash
        assert [r["tag_name"] for r in release_api.releases.values()] == ["v1.0.0"]

    def test_finalise_failure_removes_new_branch(self, plugin_repo: Path, dist_tree, release_api, sleeps) -> None:
        release_api.fail[("PATCH", "release")] = 403
        with pytest.raises(PublishFailure):
            _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")
        assert _branch_head(plugin_repo) is None
        assert release_api.releases == {}

    def test_upload_failure_leaves_branch_alone(self, plugin_repo: Path, dist_tree, release_api, sleeps) -> None:
        release_api.fail[("POST", "upload")] = 422
        with pytest.raises(PublishFailure):
            _publisher(plugin_repo, release_api, sleeps).publish(dist_tree, "v1.0.0")
        assert _branch_head(plugin_repo) is None
        assert release_api.releases == {}

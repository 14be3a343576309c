"""Thin wrapper around the ``git`` command line.

Every call goes through :meth:`Git.run`, which captures output and raises
:class:`GitCommandError` on a non-zero exit. Higher layers decide what a
failure means (tag missing, push rejected, network down).

The distribution snapshot is written straight into the source repository's
object database with a throw-away index (``GIT_INDEX_FILE``) and
``git commit-tree`` without parents, so each snapshot is a single root
commit with no history and the source checkout is never touched.
"""

from __future__ import annotations

import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from plugship.exceptions import PlugshipError
from plugship.output import debug


class GitCommandError(PlugshipError):
    """Raised when a git subprocess exits non-zero.

    Attributes:
        args_: The git arguments (without the leading ``git``).
        returncode: Process exit status.
        stderr: Captured standard error.
    """

    def __init__(self, args: list[str], returncode: int, stderr: str):
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(f"git {' '.join(args)} failed ({returncode}): {detail}")
        self.args_ = args
        self.returncode = returncode
        self.stderr = stderr


@dataclass(frozen=True)
class Snapshot:
    """A parentless commit holding a distribution tree."""

    commit: str
    tree: str


class Git:
    """Run git commands against one repository.

    Args:
        repo_dir: Repository (or worktree) directory used as the working
            directory for every command.
        env: Extra environment variables for every command.
    """

    def __init__(self, repo_dir: Path, env: Optional[Mapping[str, str]] = None) -> None:
        self.repo_dir = Path(repo_dir)
        self._env = dict(env or {})

    def run(
        self,
        *args: str,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        cwd: Optional[Path] = None,
    ) -> str:
        """Run ``git <args>`` and return stripped stdout.

        Raises:
            GitCommandError: On a non-zero exit status or timeout.
            PlugshipError: If git is not installed.
        """
        full_env = {**os.environ, **self._env, **(env or {})}
        # Never block on a credential prompt inside automation.
        full_env.setdefault("GIT_TERMINAL_PROMPT", "0")
        debug(f"git {' '.join(args)}")
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=cwd or self.repo_dir,
                env=full_env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            raise PlugshipError("git executable not found on PATH") from None
        except subprocess.TimeoutExpired:
            raise GitCommandError(list(args), -1, f"timed out after {timeout}s") from None
        if result.returncode != 0:
            raise GitCommandError(list(args), result.returncode, result.stderr)
        return result.stdout.strip()

    # ------------------------------------------------------------------ #
    # Local queries
    # ------------------------------------------------------------------ #

    def tag_commit(self, tag: str) -> Optional[str]:
        """Return the commit a tag points to, or ``None`` if the tag is absent."""
        try:
            return self.run("rev-parse", "--verify", "--quiet", f"refs/tags/{tag}^{{commit}}")
        except GitCommandError:
            return None

    def tree_of(self, commit: str) -> str:
        return self.run("rev-parse", f"{commit}^{{tree}}")

    def remote_url(self, remote: str) -> Optional[str]:
        """Return the URL configured for *remote*, or ``None``."""
        try:
            return self.run("remote", "get-url", remote)
        except GitCommandError:
            return None

    # ------------------------------------------------------------------ #
    # Worktrees
    # ------------------------------------------------------------------ #

    def add_worktree(self, path: Path, commit: str) -> None:
        """Check out *commit* as a detached worktree at *path*."""
        self.run("worktree", "add", "--detach", "--force", str(path), commit)

    def remove_worktree(self, path: Path) -> None:
        self.run("worktree", "remove", "--force", str(path))
        self.run("worktree", "prune")

    # ------------------------------------------------------------------ #
    # Snapshots
    # ------------------------------------------------------------------ #

    def snapshot(
        self,
        tree_dir: Path,
        message: str,
        author_name: str,
        author_email: str,
    ) -> Snapshot:
        """Commit the contents of *tree_dir* as a parentless commit.

        Uses a temporary index so the repository's own index and working
        tree are left alone. File modes (the executable bit) are recorded.
        """
        identity = {
            "GIT_AUTHOR_NAME": author_name,
            "GIT_AUTHOR_EMAIL": author_email,
            "GIT_COMMITTER_NAME": author_name,
            "GIT_COMMITTER_EMAIL": author_email,
        }
        git_dir = self.run("rev-parse", "--absolute-git-dir")
        work_tree = Path(tree_dir).resolve()
        base = ("--git-dir", git_dir, "--work-tree", str(work_tree))
        with tempfile.TemporaryDirectory(prefix="plugship-index-") as tmp:
            env = {"GIT_INDEX_FILE": str(Path(tmp) / "index")}
            self.run(
                *base,
                "-c", "core.fileMode=true",
                "add", "--all", "--force", ".",
                env=env,
                cwd=work_tree,
            )
            tree = self.run(*base, "write-tree", env=env, cwd=work_tree)
        commit = self.run("commit-tree", tree, "-m", message, env=identity)
        return Snapshot(commit=commit, tree=tree)

    # ------------------------------------------------------------------ #
    # Remote operations
    # ------------------------------------------------------------------ #

    def ls_remote_head(self, remote: str, branch: str, timeout: Optional[float] = None) -> Optional[str]:
        """Return the commit at ``refs/heads/<branch>`` on *remote*, or ``None``."""
        out = self.run("ls-remote", remote, f"refs/heads/{branch}", timeout=timeout)
        for line in out.splitlines():
            sha, _, ref = line.partition("\t")
            if ref == f"refs/heads/{branch}":
                return sha
        return None

    def fetch_commit(self, remote: str, branch: str, timeout: Optional[float] = None) -> None:
        """Fetch the remote branch head so its objects exist locally."""
        self.run("fetch", "--no-tags", "--quiet", remote, f"refs/heads/{branch}", timeout=timeout)

    def force_push(self, remote: str, commit: str, branch: str, timeout: Optional[float] = None) -> None:
        """Replace ``refs/heads/<branch>`` on *remote* with *commit*."""
        self.run("push", "--force", "--quiet", remote, f"{commit}:refs/heads/{branch}", timeout=timeout)

    def delete_remote_branch(self, remote: str, branch: str, timeout: Optional[float] = None) -> None:
        self.run("push", "--quiet", remote, f":refs/heads/{branch}", timeout=timeout)

"""Shared test fixtures for plugship.

Provides isolated config environments, output state management, a CLI
runner, and a throw-away plugin repository (with a bare "remote") whose
compiler and test gate are small ``python -c`` programs.
"""

from __future__ import annotations

import json
import shutil
import subprocess
import sys
from pathlib import Path
from urllib.parse import unquote

import httpx
import pytest

from plugship.models import BuildConfig, GateConfig, PublishConfig, ReleaseConfig, Target
from plugship.output import OutputFormat, OutputManager, reset_output, set_output
from plugship.publish import ReleaseClient


# Writes "<name> <os> <arch> token=<GITHUB_TOKEN>" to the output path.
# Braces are doubled because build commands are expanded with str.format.
COMPILER_SCRIPT = (
    "import os, sys; out, name, goos, goarch = sys.argv[1:5]; "
    "open(out, 'w').write(f\"{{name}} {{goos}} {{goarch}} token={{os.environ.get('GITHUB_TOKEN')}}\")"
)

# Same, but fails for one target.
FAILING_COMPILER_SCRIPT = (
    "import sys; out, name, goos, goarch = sys.argv[1:5]; "
    "sys.exit('cannot link for ' + goarch) if goarch == 'arm64' and goos == 'linux' "
    "else open(out, 'w').write(name + goos + goarch)"
)


def compiler_command(script: str = COMPILER_SCRIPT) -> list[str]:
    return [sys.executable, "-c", script, "{output}", "{name}", "{os}", "{arch}"]


def run_git(cwd: Path, *args: str) -> str:
    """Run git in *cwd* and return stripped stdout."""
    result = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points XDG_DATA_HOME into tmp_path, clears every PLUGSHIP_* and
    GITHUB_* variable that could leak into precedence resolution, and
    changes the working directory to tmp_path.
    """
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in [
        "PLUGSHIP_TAG",
        "PLUGSHIP_REPOSITORY",
        "PLUGSHIP_BRANCH",
        "GITHUB_REF",
        "GITHUB_REPOSITORY",
        "GITHUB_TOKEN",
    ]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def git_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the user's git configuration (signing, hooks) out of tests."""
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", "/dev/null")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager for the test."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True, no_color=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Sample plugin repository
# ---------------------------------------------------------------------------


def write_plugin_sources(root: Path) -> None:
    """Populate *root* with plugin metadata, sources and a stray secret."""
    (root / ".claude-plugin").mkdir(parents=True, exist_ok=True)
    (root / ".claude-plugin" / "plugin.json").write_text(
        json.dumps({"name": "tool", "version": "1.0.0"}), encoding="utf-8"
    )
    (root / "hooks").mkdir(exist_ok=True)
    (root / "hooks" / "hooks.json").write_text('{"hooks": {}}', encoding="utf-8")
    (root / "README.md").write_text("# tool\n", encoding="utf-8")
    (root / "cmd" / "tool").mkdir(parents=True, exist_ok=True)
    (root / "cmd" / "tool" / "main.go").write_text("package main\n", encoding="utf-8")
    (root / "go.mod").write_text("module example.com/tool\n", encoding="utf-8")
    (root / ".env").write_text("SECRET=hunter2\n", encoding="utf-8")


def sample_release_config(**publish: object) -> ReleaseConfig:
    """A release config whose compiler and gate are local python commands."""
    return ReleaseConfig(
        name="tool",
        build=BuildConfig(command=compiler_command(), env={}, target_env={}, workers=3),
        gate=GateConfig(command=[sys.executable, "-c", "import sys; sys.exit(0)"]),
        publish=PublishConfig(repository="acme/tool", max_retries=1, **publish),
    )


@pytest.fixture
def plugin_repo(tmp_path: Path, git_env: None) -> Path:
    """A git repository tagged ``v1.0.0`` with a bare ``origin`` remote."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    remote = tmp_path / "remote.git"
    run_git(tmp_path, "init", "-q", "--bare", str(remote))

    repo = tmp_path / "repo"
    repo.mkdir()
    run_git(repo, "init", "-q")
    write_plugin_sources(repo)
    run_git(repo, "add", "--all")
    run_git(repo, "commit", "-q", "-m", "initial")
    run_git(repo, "tag", "v1.0.0")
    run_git(repo, "remote", "add", "origin", str(remote))
    return repo


@pytest.fixture
def remote_repo(plugin_repo: Path) -> Path:
    return plugin_repo.parent / "remote.git"


@pytest.fixture
def five_targets() -> list[Target]:
    return ReleaseConfig(name="tool").targets


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Helper fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_config():
    """Factory for :func:`sample_release_config`."""
    return sample_release_config


@pytest.fixture
def compiler():
    """Factory for stand-in compiler commands (``compiler(failing=True)``)."""

    def _compiler(failing: bool = False) -> list[str]:
        return compiler_command(FAILING_COMPILER_SCRIPT if failing else COMPILER_SCRIPT)

    return _compiler


@pytest.fixture
def git():
    """The :func:`run_git` helper."""
    return run_git


@pytest.fixture
def plugin_sources():
    """The :func:`write_plugin_sources` helper."""
    return write_plugin_sources


# ---------------------------------------------------------------------------
# In-memory release API
# ---------------------------------------------------------------------------


class FakeReleaseAPI:
    """Just enough of the GitHub Releases API for :class:`ReleaseClient`.

    Serve it through ``httpx.MockTransport(api.handler)``. Set ``fail`` to
    ``{("PATCH", "release"): 403}`` style entries to inject error statuses.
    """

    def __init__(self, repository: str = "acme/tool") -> None:
        self.repository = repository
        self.releases: dict[int, dict] = {}
        self.assets: dict[int, dict[str, bytes]] = {}
        self.fail: dict[tuple[str, str], int] = {}
        self.calls: list[tuple[str, str]] = []
        self._next_id = 1

    def published(self) -> list[dict]:
        return [r for r in self.releases.values() if not r["draft"]]

    def handler(self, request):
        prefix = f"/repos/{self.repository}/releases"
        path = request.url.path
        method = request.method
        kind = "upload" if path.endswith("/assets") else "release"
        self.calls.append((method, path))
        status = self.fail.get((method, kind))
        if status is not None:
            return httpx.Response(status, json={"message": f"injected {status}"})

        if method == "GET" and path.startswith(f"{prefix}/tags/"):
            raw = request.url.raw_path.decode("ascii").split("?", 1)[0]
            tag = unquote(raw.rsplit("/", 1)[1])
            for release in self.releases.values():
                if release["tag_name"] == tag and not release["draft"]:
                    return httpx.Response(200, json=release)
            return httpx.Response(404, json={"message": "Not Found"})

        if method == "POST" and path == prefix:
            payload = json.loads(request.content)
            release_id = self._next_id
            self._next_id += 1
            body = payload.get("body")
            if body is None and payload.get("generate_release_notes"):
                body = "## What's Changed\n* initial"
            release = {
                "id": release_id,
                "tag_name": payload["tag_name"],
                "name": payload["name"],
                "draft": payload["draft"],
                "body": body,
                "html_url": f"https://github.example/{self.repository}/releases/tag/{payload['tag_name']}",
                "upload_url": f"https://uploads.example{prefix}/{release_id}/assets{{?name,label}}",
            }
            self.releases[release_id] = release
            self.assets[release_id] = {}
            return httpx.Response(201, json=release)

        if path.endswith("/assets") and method == "POST":
            release_id = int(path.split("/")[-2])
            name = request.url.params["name"]
            self.assets[release_id][name] = request.content
            return httpx.Response(201, json={"name": name, "size": len(request.content)})

        release_id = int(path.rsplit("/", 1)[1])
        if release_id not in self.releases:
            return httpx.Response(404, json={"message": "Not Found"})
        if method == "PATCH":
            self.releases[release_id].update(json.loads(request.content))
            return httpx.Response(200, json=self.releases[release_id])
        if method == "DELETE":
            del self.releases[release_id]
            self.assets.pop(release_id, None)
            return httpx.Response(204)
        return httpx.Response(405)

    def client_factory(self, max_retries: int = 0):
        """Return a factory producing clients wired to this fake."""
        return lambda: ReleaseClient(
            self.repository,
            "test-token",
            api_url="https://api.example",
            max_retries=max_retries,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def release_api() -> FakeReleaseAPI:
    return FakeReleaseAPI()

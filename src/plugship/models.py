"""Canonical Pydantic models shared across all plugship modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into two groups:

**Configuration models** -- deserialised from the project's ``plugship.json``
(or YAML equivalent):
    :class:`BinarySpec`, :class:`DispatchConfig`, :class:`BuildConfig`,
    :class:`GateConfig`, :class:`StageConfig`, :class:`PublishConfig`, and
    the root :class:`ReleaseConfig`.

**Pipeline models** -- produced and consumed while a release runs:
    :class:`Target`, :class:`Artifact`, :class:`ChecksumManifest`,
    :class:`DistributionTree`, :class:`PublishedRelease`,
    :class:`PinningDescriptor`, and :class:`PipelineState`.

Only :class:`PublishedRelease` and :class:`PinningDescriptor` outlive a run;
everything else is transient and discarded once the run finishes.
"""

from __future__ import annotations

import enum
import re
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


WINDOWS_FAMILY: frozenset[str] = frozenset({"windows"})
"""Canonical OS tokens whose artifacts carry the ``.exe`` extension."""

_TOKEN_RE = re.compile(r"^[a-z0-9][a-z0-9_]*$")
_PATTERN_RE = re.compile(r"^[a-z0-9_.*?\-]+$")
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _check_token(value: str, what: str) -> str:
    if not _TOKEN_RE.match(value):
        raise ValueError(
            f"{what} {value!r} must be lower-case letters, digits or underscores"
        )
    return value


# --- Targets ---


class Target(BaseModel):
    """One (operating system, architecture) pair the system builds for.

    Identity is the ``(os, arch)`` pair. The canonical suffix and executable
    extension are derived, never configured, so the build side and the
    dispatch shim always agree on artifact names.

    Example::

        >>> t = Target(os="windows", arch="amd64")
        >>> t.suffix, t.extension, t.artifact_name("tool")
        ('windows-amd64', '.exe', 'tool-windows-amd64.exe')
    """

    model_config = ConfigDict(frozen=True)

    os: str
    arch: str

    @field_validator("os", "arch")
    @classmethod
    def _validate_token(cls, value: str) -> str:
        return _check_token(value, "Target token")

    @property
    def suffix(self) -> str:
        """Canonical ``<os>-<arch>`` suffix."""
        return f"{self.os}-{self.arch}"

    @property
    def is_windows(self) -> bool:
        return self.os in WINDOWS_FAMILY

    @property
    def extension(self) -> str:
        """``.exe`` for Windows-family targets, empty otherwise."""
        return ".exe" if self.is_windows else ""

    def artifact_name(self, name: str) -> str:
        """Return the artifact filename for binary *name* on this target."""
        return f"{name}-{self.suffix}{self.extension}"


def _default_targets() -> list[Target]:
    return [
        Target(os="darwin", arch="amd64"),
        Target(os="darwin", arch="arm64"),
        Target(os="linux", arch="amd64"),
        Target(os="linux", arch="arm64"),
        Target(os="windows", arch="amd64"),
    ]


# --- Configuration ---


class BinarySpec(BaseModel):
    """A logical binary shipped by the plugin.

    Each binary is compiled once per target and gets its own dispatch shim
    in the distribution tree.
    """

    name: str
    package: str = Field(
        default="", description="Compiler package path; defaults to ./cmd/<name>"
    )

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if not _NAME_RE.match(value):
            raise ValueError(f"Binary name {value!r} is not a valid file name")
        return value

    @property
    def package_path(self) -> str:
        return self.package or f"./cmd/{self.name}"


class DispatchConfig(BaseModel):
    """Lookup tables embedded in the generated dispatch shim.

    Keys are lower-cased glob patterns matched against the host's
    kernel-name (``uname -s``) and machine-hardware (``uname -m``) reports;
    values are canonical tokens. Tables are ordered and the first matching
    pattern wins. A report matching no pattern is never guessed.
    """

    bin_dir: str = Field(
        default="bin", description="Tree-relative directory holding shims and artifacts"
    )
    os_map: dict[str, str] = Field(
        default_factory=lambda: {
            "darwin": "darwin",
            "linux": "linux",
            "mingw*": "windows",
            "msys*": "windows",
            "cygwin*": "windows",
            "windows_nt": "windows",
        }
    )
    arch_map: dict[str, str] = Field(
        default_factory=lambda: {
            "x86_64": "amd64",
            "amd64": "amd64",
            "x64": "amd64",
            "arm64": "arm64",
            "aarch64": "arm64",
        }
    )

    @field_validator("os_map", "arch_map")
    @classmethod
    def _validate_table(cls, table: dict[str, str]) -> dict[str, str]:
        for pattern, token in table.items():
            if not _PATTERN_RE.match(pattern):
                raise ValueError(
                    f"Dispatch pattern {pattern!r} may only contain lower-case "
                    "letters, digits, '_', '-', '.', '*' and '?'"
                )
            _check_token(token, "Dispatch token")
        return table

    @field_validator("bin_dir")
    @classmethod
    def _validate_bin_dir(cls, value: str) -> str:
        path = Path(value)
        if path.is_absolute() or ".." in path.parts:
            raise ValueError(f"bin_dir {value!r} must be a relative path inside the tree")
        return value


class BuildConfig(BaseModel):
    """How the external compiler is invoked for each target.

    ``command``, ``env`` values and ``target_env`` values are templates
    expanded per build with ``{name}``, ``{package}``, ``{output}``,
    ``{os}``, ``{arch}`` and ``{version}``. Literal braces must be doubled
    (``{{`` and ``}}``).
    """

    command: list[str] = Field(
        default_factory=lambda: [
            "go", "build",
            "-trimpath",
            "-buildvcs=false",
            "-ldflags=-s -w -X main.version={version}",
            "-o", "{output}",
            "{package}",
        ],
        min_length=1,
    )
    env: dict[str, str] = Field(default_factory=lambda: {"CGO_ENABLED": "0"})
    target_env: dict[str, str] = Field(
        default_factory=lambda: {"GOOS": "{os}", "GOARCH": "{arch}"}
    )
    scrub_env: list[str] = Field(
        default_factory=lambda: ["GITHUB_TOKEN", "GH_TOKEN", "PLUGSHIP_TOKEN"],
        description="Variables removed from the compiler environment",
    )
    workers: int = Field(default=4, ge=1, description="Parallel target builds")
    timeout: int = Field(default=600, ge=1, description="Per-target timeout in seconds")


class GateConfig(BaseModel):
    """The pre-flight test command run against the pinned snapshot."""

    command: list[str] = Field(
        default_factory=lambda: ["go", "test", "./..."], min_length=1
    )
    timeout: int = Field(default=900, ge=1)


class StageConfig(BaseModel):
    """What goes into the distribution tree besides artifacts and shims.

    ``required`` and ``optional`` are repository-relative files or
    directories. ``exclude`` uses gitignore syntax and is applied to every
    file copied out of the snapshot.
    """

    required: list[str] = Field(default_factory=lambda: [".claude-plugin/plugin.json"])
    optional: list[str] = Field(
        default_factory=lambda: ["hooks", "skills", "commands", "README.md", "LICENSE"]
    )
    exclude: list[str] = Field(
        default_factory=lambda: [
            ".git/",
            ".env",
            ".env.*",
            "*.pem",
            "*.key",
            "*.p12",
            ".npmrc",
            ".netrc",
            "*.go",
            "go.mod",
            "go.sum",
        ]
    )
    manifest_name: str = Field(default="checksums.txt")


class PublishConfig(BaseModel):
    """Where and how the distribution tree is published."""

    repository: Optional[str] = Field(
        default=None, description="owner/name; falls back to GITHUB_REPOSITORY"
    )
    remote: str = Field(default="origin", description="Git remote name or URL")
    branch: str = Field(default="dist", description="History-less distribution branch")
    api_url: str = Field(default="https://api.github.com")
    token_source: str = Field(
        default="env:GITHUB_TOKEN",
        description="Credential source: env:VAR, file:/path, prompt",
    )
    max_retries: int = Field(default=3, ge=0)
    timeout: int = Field(default=30, ge=1, description="API timeout in seconds")
    notes: Optional[str] = Field(default=None, description="Operator-supplied release notes")
    generate_notes: bool = True
    republish: Literal["always", "skip-identical"] = "always"
    existing_release: Literal["replace", "fail"] = "replace"
    commit_name: str = "plugship"
    commit_email: str = "plugship@users.noreply.github.com"

    @field_validator("repository")
    @classmethod
    def _validate_repository(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value.count("/") != 1:
            raise ValueError(f"repository {value!r} must look like 'owner/name'")
        return value


class ReleaseConfig(BaseModel):
    """Root project configuration loaded from ``plugship.json``.

    See Also:
        :func:`~plugship.config.load_release_config`: file discovery and
        parsing.
        :func:`~plugship.config.resolve_release_config`: precedence layering.
    """

    name: Optional[str] = None
    binaries: list[BinarySpec] = Field(default_factory=list)
    targets: list[Target] = Field(default_factory=_default_targets)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    stage: StageConfig = Field(default_factory=StageConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)

    @model_validator(mode="after")
    def _check_matrix(self) -> ReleaseConfig:
        if not self.binaries:
            if not self.name:
                raise ValueError("either 'name' or 'binaries' must be set")
            self.binaries = [BinarySpec(name=self.name)]
        if not self.targets:
            raise ValueError("at least one target is required")

        seen_targets: set[tuple[str, str]] = set()
        for target in self.targets:
            key = (target.os, target.arch)
            if key in seen_targets:
                raise ValueError(f"duplicate target {target.suffix}")
            seen_targets.add(key)

        names = [b.name for b in self.binaries]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate binary names: {', '.join(duplicates)}")
        return self


# --- Pipeline entities ---


class Artifact(BaseModel):
    """A compiled binary for one (binary, target) pair."""

    name: str
    target: Target
    path: Path
    size: int
    sha256: str

    @property
    def filename(self) -> str:
        return self.path.name


class ChecksumManifest(BaseModel):
    """Ordered mapping of artifact filename to SHA-256 hex digest.

    Rendered in ``sha256sum`` format by
    :func:`~plugship.checksums.render_manifest`.
    """

    entries: dict[str, str] = Field(default_factory=dict)

    @property
    def filenames(self) -> list[str]:
        return list(self.entries)


class DistributionTree(BaseModel):
    """The source-free directory assembled for publishing.

    Built whole by :class:`~plugship.stage.ReleaseStager` and never
    mutated afterwards.
    """

    root: Path
    bin_dir: Path
    artifacts: list[Artifact]
    shims: list[Path]
    manifest: ChecksumManifest
    manifest_path: Path
    metadata: list[str] = Field(
        default_factory=list, description="Tree-relative metadata files"
    )

    @property
    def asset_paths(self) -> list[Path]:
        """Files attached to the release: every artifact plus the manifest."""
        return [a.path for a in self.artifacts] + [self.manifest_path]


class PublishedRelease(BaseModel):
    """An immutable tagged release referencing a published snapshot."""

    model_config = ConfigDict(frozen=True)

    tag: str
    content_hash: str
    branch: str
    assets: list[str] = Field(default_factory=list)
    url: Optional[str] = None
    dry_run: bool = False


class PinningDescriptor(BaseModel):
    """The record a downstream consumer stores to reproduce a release exactly."""

    model_config = ConfigDict(frozen=True)

    repository: str
    ref: str
    sha: str


class PipelineState(str, enum.Enum):
    """States of a single pipeline run."""

    IDLE = "idle"
    TAG_RESOLVED = "tag_resolved"
    TEST_GATE_PASSED = "test_gate_passed"
    BUILT = "built"
    STAGED = "staged"
    PUBLISHED = "published"
    DONE = "done"
    FAILED = "failed"

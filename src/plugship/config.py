"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all configuration for plugship:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.plugship/`` on macOS and Windows. Only crash logs live there; release
  configuration is per-repository. See :func:`get_data_dir`.
* **Project config** -- ``plugship.json`` (or ``plugship.yaml`` /
  ``plugship.yml``) at the repository root, deserialised into a
  :class:`~plugship.models.ReleaseConfig`. See :func:`load_release_config`.
* **Precedence resolution** -- :func:`resolve_release_config` layers CLI
  flags and environment variables over the project file.
* **Credential resolution** -- :func:`resolve_credential` reads the publish
  token from env vars, files, or an interactive prompt.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so a crash never leaves a half-written config or pin
file behind.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import re
import sys
import tempfile
from pathlib import Path
from typing import Any, Optional

import yaml

from plugship.exceptions import ConfigError
from plugship.models import ReleaseConfig

_APP_NAME = "plugship"

PROJECT_CONFIG_FILENAMES: tuple[str, ...] = ("plugship.json", "plugship.yaml", "plugship.yml")
"""Project config file names, in lookup order."""

_GITHUB_URL_RE = re.compile(
    r"^(?:https?://|ssh://git@|git@)github\.com[:/](?P<repo>[^/\s]+/[^/\s]+?)(?:\.git)?/?$"
)


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/plugship/`` (default ``~/.local/share/plugship/``).
    On macOS/Windows: ``~/.plugship/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    On any failure the temp file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Project config ---


def find_project_config(root: Path) -> Optional[Path]:
    """Return the first project config file found in *root*, or ``None``."""
    for filename in PROJECT_CONFIG_FILENAMES:
        candidate = root / filename
        if candidate.is_file():
            return candidate
    return None


def _parse_config_text(text: str, path: Path) -> Any:
    if path.suffix in (".yaml", ".yml"):
        return yaml.safe_load(text)
    return json.loads(text)


def load_release_config(path: Path) -> ReleaseConfig:
    """Load and validate a project config file.

    Args:
        path: A ``.json``, ``.yaml`` or ``.yml`` file.

    Returns:
        The deserialised :class:`~plugship.models.ReleaseConfig`.

    Raises:
        ConfigError: If the file is missing, unparsable, or fails
            Pydantic validation.
    """
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = _parse_config_text(path.read_text(encoding="utf-8"), path)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config at {path}: top level must be an object")
    try:
        return ReleaseConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_release_config(config: ReleaseConfig, path: Path) -> None:
    """Persist *config* atomically as JSON (YAML when *path* ends in .yaml/.yml)."""
    data = config.model_dump(mode="json", exclude_defaults=True)
    if path.suffix in (".yaml", ".yml"):
        text = yaml.safe_dump(data, sort_keys=False)
    else:
        text = json.dumps(data, indent=2) + "\n"
    atomic_write(path, text)


# --- Precedence resolution ---


def resolve_release_config(
    root: Path,
    config_path: Optional[Path] = None,
    cli_repository: Optional[str] = None,
    cli_branch: Optional[str] = None,
) -> ReleaseConfig:
    """Resolve the effective release configuration.

    Precedence (high to low):
        1. CLI flags (``cli_repository``, ``cli_branch``)
        2. Environment variables (``PLUGSHIP_REPOSITORY``, then
           ``GITHUB_REPOSITORY``; ``PLUGSHIP_BRANCH``)
        3. Project config (``plugship.json`` in *root*, or *config_path*)
        4. Defaults

    Raises:
        ConfigError: If no project config exists or it is invalid.
    """
    path = config_path or find_project_config(root)
    if path is None:
        names = ", ".join(PROJECT_CONFIG_FILENAMES)
        raise ConfigError(f"No project config found in {root} (looked for {names})")
    config = load_release_config(path)

    publish = config.publish
    updates: dict[str, Any] = {}

    env_repository = os.environ.get("PLUGSHIP_REPOSITORY")
    if cli_repository:
        updates["repository"] = cli_repository
    elif env_repository:
        updates["repository"] = env_repository
    elif publish.repository is None and os.environ.get("GITHUB_REPOSITORY"):
        updates["repository"] = os.environ["GITHUB_REPOSITORY"]

    env_branch = os.environ.get("PLUGSHIP_BRANCH")
    if cli_branch:
        updates["branch"] = cli_branch
    elif env_branch:
        updates["branch"] = env_branch

    if updates:
        try:
            merged = publish.model_dump() | updates
            config.publish = type(publish).model_validate(merged)
        except ValueError as exc:
            raise ConfigError(f"Invalid publish override: {exc}") from exc
    return config


def repository_from_remote_url(url: str) -> Optional[str]:
    """Extract ``owner/name`` from a GitHub remote URL, or ``None``.

    Handles ``https://github.com/o/r(.git)``, ``git@github.com:o/r.git`` and
    ``ssh://git@github.com/o/r.git``.
    """
    match = _GITHUB_URL_RE.match(url.strip())
    return match.group("repo") if match else None


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if not value:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Release token: ")

    raise ConfigError(f"Unknown credential source format: {source}")


def credential_env_var(source: str) -> Optional[str]:
    """Return the variable name behind an ``env:`` source, else ``None``."""
    return source[4:] if source.startswith("env:") else None

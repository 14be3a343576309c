"""SHA-256 checksums and the ``sha256sum``-compatible manifest format.

The manifest is one line per artifact, sorted by filename::

    3b0c...e1f2  tool-darwin-amd64
    9a41...07cd  tool-linux-arm64

so that consumers can verify a download with ``sha256sum -c checksums.txt``
without any plugship tooling installed.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Iterable

from plugship.models import ChecksumManifest


_CHUNK_SIZE = 1024 * 1024
_LINE_RE = re.compile(r"^([0-9a-f]{64}) [ *](.+)$")
_ARTIFACT_RE = re.compile(r"^(.+)-[a-z0-9]+-[a-z0-9]+(?:\.exe)?$")


def sha256_file(path: Path) -> str:
    """Return the hex SHA-256 digest of the file at *path*."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def build_manifest(paths: Iterable[Path]) -> ChecksumManifest:
    """Hash every file in *paths* and return a manifest ordered by filename.

    Raises:
        ValueError: If two paths share a filename.
    """
    entries: dict[str, str] = {}
    for path in sorted(paths, key=lambda p: p.name):
        if path.name in entries:
            raise ValueError(f"Duplicate artifact filename in manifest: {path.name}")
        entries[path.name] = sha256_file(path)
    return ChecksumManifest(entries=entries)


def render_manifest(manifest: ChecksumManifest) -> str:
    """Render *manifest* in ``sha256sum`` text format."""
    return "".join(f"{digest}  {name}\n" for name, digest in manifest.entries.items())


def parse_manifest(text: str) -> ChecksumManifest:
    """Parse ``sha256sum`` output back into a :class:`ChecksumManifest`.

    Blank lines are ignored. Both text (``"  "``) and binary (``" *"``)
    separators are accepted.

    Raises:
        ValueError: On a malformed line or a repeated filename.
    """
    entries: dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        match = _LINE_RE.match(line.strip())
        if match is None:
            raise ValueError(f"Malformed checksum line {lineno}: {line!r}")
        digest, name = match.groups()
        if name in entries:
            raise ValueError(f"Duplicate entry for {name} on line {lineno}")
        entries[name] = digest
    return ChecksumManifest(entries=entries)


def verify_directory(
    directory: Path, manifest: ChecksumManifest, ignore: Iterable[str] = ()
) -> list[str]:
    """Check every manifest entry against the files in *directory*.

    Files named like an artifact (``<name>-<os>-<arch>[.exe]``) that the
    manifest does not list are reported too. Shims for the manifest's
    logical binaries and the names in *ignore* are not artifacts.

    Returns:
        A list of human-readable problems; empty when everything matches.
    """
    problems: list[str] = []
    for name, expected in manifest.entries.items():
        path = directory / name
        if not path.is_file():
            problems.append(f"{name}: missing")
            continue
        actual = sha256_file(path)
        if actual != expected:
            problems.append(f"{name}: checksum mismatch (expected {expected}, got {actual})")

    skip = set(manifest.entries) | set(ignore)
    for name in manifest.entries:
        match = _ARTIFACT_RE.match(name)
        if match:
            skip.add(match.group(1))
    for path in sorted(directory.iterdir()):
        if path.is_file() and path.name not in skip and _ARTIFACT_RE.match(path.name):
            problems.append(f"{path.name}: not in manifest")
    return problems

"""Release Stager -- assemble the source-free distribution tree.

The tree is always built from scratch in an empty directory and contains
exactly:

* the declared metadata files (``stage.required`` and whatever exists of
  ``stage.optional``), copied out of the pinned snapshot;
* ``<bin_dir>/<name>`` -- one generated dispatch shim per logical binary;
* ``<bin_dir>/<name>-<os>-<arch>[.exe]`` -- every built artifact;
* ``<bin_dir>/<manifest_name>`` -- SHA-256 manifest of the artifacts.

Nothing else from the snapshot is copied: no sources, no build caches, and
nothing matching ``stage.exclude`` (gitignore syntax, evaluated with
:mod:`pathspec`). The manifest is computed from the staged bytes after every
artifact is in place, and each staged file must still match the checksum
recorded at build time.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Iterable, Optional

import pathspec

from plugship.checksums import build_manifest, render_manifest, sha256_file
from plugship.dispatch.shim import write_shim
from plugship.exceptions import StagingFailure
from plugship.models import Artifact, BinarySpec, DispatchConfig, DistributionTree, StageConfig
from plugship.output import debug, warning


class ReleaseStager:
    """Builds a :class:`~plugship.models.DistributionTree` from artifacts.

    Args:
        config: Metadata declarations, exclusions and manifest name.
        dispatch: Dispatch tables for the generated shims and the tree's
            ``bin_dir``.
        source_dir: Pinned source snapshot holding the metadata files.
    """

    def __init__(self, config: StageConfig, dispatch: DispatchConfig, source_dir: Path) -> None:
        self.config = config
        self.dispatch = dispatch
        self.source_dir = Path(source_dir).resolve()
        self._exclude = pathspec.PathSpec.from_lines("gitignore", config.exclude)

    def stage(
        self,
        artifacts: Iterable[Artifact],
        binaries: Iterable[BinarySpec],
        tree_dir: Path,
    ) -> DistributionTree:
        """Assemble the tree in *tree_dir*, replacing anything already there.

        Raises:
            StagingFailure: If a required metadata file is missing or
                excluded, an artifact is missing or changed since it was
                built, or two staged files would collide.
        """
        artifacts = list(artifacts)
        binaries = list(binaries)
        if not artifacts:
            raise StagingFailure("No artifacts to stage")

        required = self._check_required()

        tree_dir = Path(tree_dir)
        if tree_dir.exists():
            shutil.rmtree(tree_dir)
        tree_dir.mkdir(parents=True)
        bin_dir = tree_dir / self.dispatch.bin_dir
        bin_dir.mkdir(parents=True, exist_ok=True)

        metadata: list[str] = []
        for rel in required:
            metadata.extend(self._copy_declared(rel, tree_dir, required=True))
        for rel in self.config.optional:
            metadata.extend(self._copy_declared(rel, tree_dir, required=False))

        staged = [self._stage_artifact(a, bin_dir) for a in artifacts]

        shims: list[Path] = []
        reserved = {a.filename for a in staged} | {self.config.manifest_name}
        for binary in binaries:
            if binary.name in reserved:
                raise StagingFailure(f"Shim name {binary.name!r} collides with another staged file")
            shim = bin_dir / binary.name
            if shim.exists():
                raise StagingFailure(
                    f"Shim {binary.name!r} collides with a metadata file in {self.dispatch.bin_dir}/"
                )
            shims.append(write_shim(binary.name, bin_dir, self.dispatch))

        manifest_path = bin_dir / self.config.manifest_name
        if manifest_path.exists():
            raise StagingFailure(f"Manifest path {manifest_path} is already occupied")
        try:
            manifest = build_manifest(a.path for a in staged)
        except ValueError as exc:
            raise StagingFailure(str(exc)) from exc
        manifest_path.write_text(render_manifest(manifest), encoding="utf-8", newline="\n")

        debug(f"Staged {len(staged)} artifacts, {len(shims)} shims, {len(metadata)} metadata files")
        return DistributionTree(
            root=tree_dir,
            bin_dir=bin_dir,
            artifacts=staged,
            shims=shims,
            manifest=manifest,
            manifest_path=manifest_path,
            metadata=sorted(metadata),
        )

    # ------------------------------------------------------------------ #
    # Metadata
    # ------------------------------------------------------------------ #

    def _resolve_inside(self, rel: str) -> Path:
        path = (self.source_dir / rel).resolve()
        try:
            path.relative_to(self.source_dir)
        except ValueError:
            raise StagingFailure(
                f"Metadata path {rel!r} points outside the source tree", missing=[rel]
            ) from None
        return path

    def _check_required(self) -> list[str]:
        missing = [
            rel for rel in self.config.required if not self._resolve_inside(rel).exists()
        ]
        if missing:
            raise StagingFailure(
                f"Required metadata missing: {', '.join(missing)}", missing=missing
            )
        excluded = [rel for rel in self.config.required if self._is_excluded(rel)]
        if excluded:
            raise StagingFailure(
                f"Required metadata matches an exclusion rule: {', '.join(excluded)}",
                missing=excluded,
            )
        return list(self.config.required)

    def _is_excluded(self, rel: str) -> bool:
        return self._exclude.match_file(Path(rel).as_posix())

    def _copy_declared(self, rel: str, tree_dir: Path, required: bool) -> list[str]:
        """Copy one declared file or directory, returning tree-relative paths."""
        source = self._resolve_inside(rel)
        if not source.exists():
            if required:
                raise StagingFailure(f"Required metadata missing: {rel}", missing=[rel])
            debug(f"Optional metadata not present: {rel}")
            return []

        if source.is_file():
            rel_posix = source.relative_to(self.source_dir).as_posix()
            if self._is_excluded(rel_posix):
                warning(f"Skipping excluded metadata file: {rel_posix}")
                return []
            self._copy_file(source, tree_dir / rel_posix)
            return [rel_posix]

        copied: list[str] = []
        for path in sorted(source.rglob("*")):
            if not path.is_file():
                continue
            rel_posix = path.relative_to(self.source_dir).as_posix()
            if path.is_symlink() and not path.resolve().is_relative_to(self.source_dir):
                warning(f"Skipping symlink that leaves the source tree: {rel_posix}")
                continue
            if self._is_excluded(rel_posix):
                debug(f"Excluded from tree: {rel_posix}")
                continue
            self._copy_file(path, tree_dir / rel_posix)
            copied.append(rel_posix)
        return copied

    @staticmethod
    def _copy_file(source: Path, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest, follow_symlinks=True)

    # ------------------------------------------------------------------ #
    # Artifacts
    # ------------------------------------------------------------------ #

    def _stage_artifact(self, artifact: Artifact, bin_dir: Path) -> Artifact:
        if not artifact.path.is_file():
            raise StagingFailure(
                f"Artifact missing: {artifact.path}", missing=[str(artifact.path)]
            )
        dest = bin_dir / artifact.filename
        if dest.exists():
            raise StagingFailure(f"Duplicate artifact in tree: {artifact.filename}")
        shutil.copy2(artifact.path, dest)
        digest = sha256_file(dest)
        if digest != artifact.sha256:
            raise StagingFailure(
                f"Artifact {artifact.filename} changed after build "
                f"(built {artifact.sha256}, staged {digest})"
            )
        return artifact.model_copy(update={"path": dest})


def tree_files(tree: DistributionTree, root: Optional[Path] = None) -> list[str]:
    """Return every file in *tree* as a sorted, root-relative POSIX path."""
    base = root or tree.root
    return sorted(p.relative_to(base).as_posix() for p in base.rglob("*") if p.is_file())

"""
Artifact packaging.

Assembles compiled assets, the bundled server and a manifest into one
deployable directory. Every build replaces the previous artifact in full,
and nothing is declared ready until each file the manifest references has
been checked on disk.
"""

import hashlib
import logging
import os
import re
import shutil
import zipfile
from collections.abc import Iterable
from pathlib import Path

from shipwright.artifact.lock import ArtifactLock
from shipwright.build.assets import ENTRY_DOCUMENT
from shipwright.core.exceptions import PackagingIntegrityError
from shipwright.core.models import (
    ASSETS_DIRNAME,
    MANIFEST_FILENAME,
    Artifact,
    BuildConfiguration,
    Manifest,
)

logger = logging.getLogger(__name__)


def file_sha256(path: Path) -> str:
    """Compute the SHA256 hex digest of a file."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _artifact_files(root: Path) -> list[str]:
    """Relative POSIX paths of every file in the artifact except the manifest."""
    return sorted(
        p.relative_to(root).as_posix()
        for p in root.rglob("*")
        if p.is_file() and p.relative_to(root).as_posix() != MANIFEST_FILENAME
    )


# Bytes that may end a path embedded in text
_PATH_END = rb"(?=[\"'`\s),;]|\Z)"
# Leading bytes of text files scanned for a NUL to detect binary content
_BINARY_SNIFF = 8192


def _source_path_pattern(root: Path) -> re.Pattern[bytes]:
    """Match ``root`` as a whole path, capturing the segment that follows it."""
    return re.compile(
        rb"(?<![\w.\-])"
        + re.escape(os.fsencode(root))
        + rb"(?:/(?P<segment>[^/\"'`\s?#)]*)|"
        + _PATH_END
        + rb")"
    )


def _embeds_source_path(data: bytes, roots: list[tuple[Path, re.Pattern[bytes]]]) -> bool:
    """
    Whether text ``data`` embeds one of the source roots.

    A root counts when it stands alone or continues into an entry that
    exists under it. ``/src/apps/list`` for root ``/src/app`` and URL paths
    such as ``<root>/routes/list`` with no ``routes`` entry do not count.
    Binary content is never matched.
    """
    if b"\0" in data[:_BINARY_SNIFF]:
        return False
    for root, pattern in roots:
        for match in pattern.finditer(data):
            segment = match.group("segment")
            if not segment or (root / os.fsdecode(segment)).exists():
                return True
    return False


def _file_embeds_source_path(path: Path, roots: list[tuple[Path, re.Pattern[bytes]]]) -> bool:
    """Check a file, or each member of a zip archive, for embedded source roots."""
    if zipfile.is_zipfile(path):
        with zipfile.ZipFile(path) as archive:
            return any(_embeds_source_path(archive.read(name), roots) for name in archive.namelist())
    return _embeds_source_path(path.read_bytes(), roots)


def verify_artifact(
    path: Path,
    manifest: Manifest | None = None,
    *,
    forbidden_paths: Iterable[Path] = (),
) -> Artifact:
    """
    Prove an artifact directory matches its manifest.

    Checks that every manifest file exists with its recorded checksum, the
    entry file and assets directory are present, no file exists that the
    manifest does not reference, and no file embeds one of
    ``forbidden_paths`` (absolute source-tree locations).

    Args:
        path: Artifact directory
        manifest: Manifest to check against (read from disk if None)
        forbidden_paths: Absolute paths that must not appear in any file

    Returns:
        The verified Artifact

    Raises:
        PackagingIntegrityError: Listing every problem found
    """
    if not path.is_dir():
        raise PackagingIntegrityError("Artifact directory does not exist", artifact_path=str(path))

    if manifest is None:
        manifest_path = path / MANIFEST_FILENAME
        if not manifest_path.is_file():
            raise PackagingIntegrityError("Artifact has no manifest", artifact_path=str(path))
        manifest = Manifest.from_file(manifest_path)

    problems: list[str] = []

    if manifest.entry not in manifest.files:
        problems.append(f"entry not listed in manifest: {manifest.entry}")
    if manifest.assets_dir and not (path / manifest.assets_dir / ENTRY_DOCUMENT).is_file():
        problems.append(f"assets entry document missing: {manifest.assets_dir}/{ENTRY_DOCUMENT}")

    for rel, expected in sorted(manifest.files.items()):
        file_path = path / rel
        if not file_path.is_file():
            problems.append(f"missing file: {rel}")
        elif file_sha256(file_path) != expected:
            problems.append(f"checksum mismatch: {rel}")

    for rel in _artifact_files(path):
        if rel not in manifest.files:
            problems.append(f"unreferenced file: {rel}")

    roots = [(p, _source_path_pattern(p)) for p in forbidden_paths]
    if roots:
        for rel in sorted(manifest.files):
            file_path = path / rel
            if file_path.is_file() and _file_embeds_source_path(file_path, roots):
                problems.append(f"absolute source path embedded in: {rel}")

    if problems:
        raise PackagingIntegrityError(
            f"Artifact failed verification ({len(problems)} problems)",
            artifact_path=str(path),
            problems=problems,
        )

    return Artifact(path=path, manifest=manifest)


class ArtifactPackager:
    """
    Assemble and verify a deployable artifact.

    Steps, in order, under an exclusive lock for the artifact path:
    1. remove any existing artifact directory in full
    2. recreate the directory
    3. copy the bundled server, compiled assets and included trees
    4. write the manifest
    5. verify the result; on failure the directory is removed
    """

    def __init__(self, config: BuildConfiguration):
        self._config = config

    @property
    def output_dir(self) -> Path:
        return self._config.output_dir

    def package(self, server_bundle: Path, assets_dir: Path | None = None) -> Artifact:
        """
        Package build outputs into the configured artifact directory.

        Args:
            server_bundle: Bundled server file
            assets_dir: Compiled asset directory, if the service has a UI

        Returns:
            The verified Artifact

        Raises:
            PackagingIntegrityError: If inputs are missing or verification fails
            ArtifactBusyError: If another build is packaging the same path
        """
        target = self._config.output_dir
        self._check_inputs(server_bundle, assets_dir)
        self._check_target_is_safe(target)

        with ArtifactLock(target):
            self._clear(target)
            target.mkdir(parents=True)
            try:
                return self._assemble(target, server_bundle, assets_dir)
            except BaseException:
                shutil.rmtree(target, ignore_errors=True)
                raise

    def verify(self, path: Path | None = None) -> Artifact:
        """Re-check an existing artifact, including for embedded source paths."""
        return verify_artifact(path or self._config.output_dir, forbidden_paths=self._source_roots())

    def _assemble(self, target: Path, server_bundle: Path, assets_dir: Path | None) -> Artifact:
        shutil.copy2(server_bundle, target / server_bundle.name)
        if assets_dir is not None:
            shutil.copytree(assets_dir, target / ASSETS_DIRNAME)
        for extra in self._config.include:
            destination = target / extra.name
            if destination.exists():
                raise PackagingIntegrityError(
                    f"Included directory collides with artifact content: {extra.name}",
                    artifact_path=str(target),
                )
            shutil.copytree(extra, destination)

        manifest = Manifest(
            name=self._config.name,
            module_type=self._config.module_format,
            entry=server_bundle.name,
            start_command=[self._config.runtime, server_bundle.name],
            external_dependencies=sorted(self._config.external),
            assets_dir=ASSETS_DIRNAME if assets_dir is not None else None,
            defines=dict(self._config.defines),
            files={rel: file_sha256(target / rel) for rel in _artifact_files(target)},
        )
        (target / MANIFEST_FILENAME).write_text(manifest.to_json())

        artifact = verify_artifact(target, manifest, forbidden_paths=self._source_roots())
        logger.info(f"Packaged artifact {manifest.name} at {target} ({len(manifest.files)} files)")
        return artifact

    def _check_inputs(self, server_bundle: Path, assets_dir: Path | None) -> None:
        problems = []
        if not server_bundle.is_file():
            problems.append(f"server bundle missing: {server_bundle}")
        if assets_dir is not None and not (assets_dir / ENTRY_DOCUMENT).is_file():
            problems.append(f"compiled assets missing entry document: {assets_dir}")
        for extra in self._config.include:
            if not extra.is_dir():
                problems.append(f"included directory missing: {extra}")
        if problems:
            raise PackagingIntegrityError(
                "Build outputs are incomplete",
                artifact_path=str(self._config.output_dir),
                problems=problems,
            )

    def _check_target_is_safe(self, target: Path) -> None:
        """Refuse to clear a directory that holds the sources being packaged."""
        resolved = target.resolve()
        for source in self._source_roots():
            if source == resolved or resolved in source.parents:
                raise PackagingIntegrityError(
                    f"Artifact directory {target} contains build sources ({source})",
                    artifact_path=str(target),
                )

    def _source_roots(self) -> list[Path]:
        roots = [self._config.bundle_root]
        if self._config.assets_source is not None:
            roots.append(self._config.assets_source)
        return [r.resolve() for r in roots]

    @staticmethod
    def _clear(target: Path) -> None:
        if target.is_dir() and not target.is_symlink():
            logger.info(f"Removing previous artifact at {target}")
            shutil.rmtree(target)
        elif target.exists() or target.is_symlink():
            target.unlink()

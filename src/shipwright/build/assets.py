"""
Static asset compilation.

Produces a static directory with an entry document whose references are
all relative, so the tree can be served from any mount point.
"""

import logging
import os
import re
import shutil
from collections.abc import Sequence
from pathlib import Path

from shipwright.build.commands import run_build_command
from shipwright.core.exceptions import BuildError

logger = logging.getLogger(__name__)

ENTRY_DOCUMENT = "index.html"
SKIPPED_NAMES = frozenset({"node_modules", "__pycache__"})
REWRITTEN_SUFFIXES = frozenset({".html", ".htm", ".css"})

# src="/x" and href="/x", but not protocol-relative "//host/x"
_ATTR_REF = re.compile(r"""\b(?P<attr>src|href)=(?P<q>["'])/(?!/)(?P<path>[^"']*)(?P=q)""")
_CSS_URL_REF = re.compile(r"""url\((?P<q>["']?)/(?!/)(?P<path>[^)"']*)(?P=q)\)""")


def _ignore_hidden(directory: str, names: list[str]) -> set[str]:
    return {n for n in names if n.startswith(".") or n in SKIPPED_NAMES}


class AssetCompiler:
    """
    Compile a UI source tree into a static asset directory.

    With ``command``, an external compiler (e.g. ``npx vite build --outDir {out}``)
    produces the output; otherwise the tree is copied as-is. Either way,
    root-absolute references in HTML and CSS are rewritten relative to the
    referencing file.
    """

    def __init__(
        self,
        source: Path,
        *,
        command: Sequence[str] | None = None,
        entry_document: str = ENTRY_DOCUMENT,
    ):
        self._source = source
        self._command = list(command) if command else None
        self._entry_document = entry_document

    def compile(self, output: Path) -> Path:
        """
        Compile assets into ``output``.

        Args:
            output: Directory to create; replaced if it exists

        Returns:
            The output directory

        Raises:
            BuildError: If the source is missing, the compiler fails, or no
                entry document was produced
        """
        if not self._source.is_dir():
            raise BuildError(
                f"Asset source directory not found: {self._source}",
                step="assets",
            )

        if output.exists():
            shutil.rmtree(output)

        if self._command:
            argv = [arg.replace("{out}", str(output)) for arg in self._command]
            run_build_command(argv, step="assets", cwd=self._source)
            if not output.is_dir():
                raise BuildError(
                    f"Asset compiler produced no output at {output}",
                    step="assets",
                )
        else:
            shutil.copytree(self._source, output, ignore=_ignore_hidden)

        rewritten = self._relativize(output)

        if not (output / self._entry_document).is_file():
            raise BuildError(
                f"Compiled assets have no entry document ({self._entry_document})",
                step="assets",
            )

        logger.info(f"Compiled assets into {output} ({rewritten} files rewritten)")
        return output

    def _relativize(self, root: Path) -> int:
        """Rewrite root-absolute references to relative ones. Returns files changed."""
        changed = 0
        for path in sorted(root.rglob("*")):
            if not path.is_file() or path.suffix.lower() not in REWRITTEN_SUFFIXES:
                continue

            # Undecodable bytes (e.g. a latin-1 licence comment) round-trip unchanged
            original = path.read_bytes().decode("utf-8", errors="surrogateescape")

            def relative(target: str) -> str:
                rel = os.path.relpath(root / target, start=path.parent)
                rel = Path(rel).as_posix()
                if target.endswith("/") and not rel.endswith("/"):
                    rel += "/"
                return rel if rel != "." else "./"

            text = _ATTR_REF.sub(
                lambda m: f"{m['attr']}={m['q']}{relative(m['path'])}{m['q']}", original
            )
            text = _CSS_URL_REF.sub(lambda m: f"url({m['q']}{relative(m['path'])}{m['q']})", text)

            if text != original:
                path.write_bytes(text.encode("utf-8", errors="surrogateescape"))
                changed += 1
        return changed

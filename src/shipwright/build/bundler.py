"""
Server bundling.

Packs the server source tree into one executable file that needs no
further build step at deploy time. Declared external dependencies are
never inlined; they must be installed next to the artifact at runtime.
"""

import io
import logging
import os
import re
import tokenize
import traceback
import zipfile
from pathlib import Path

from shipwright.core.exceptions import BuildError
from shipwright.core.models import BuildConfiguration, ExternalPolicy, ModuleFormat

logger = logging.getLogger(__name__)

# Fixed entry timestamp so identical sources give identical archives
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
SKIPPED_NAMES = frozenset({"__pycache__", "node_modules"})
# Skipped only directly under the bundled root
TOP_LEVEL_SKIPPED_NAMES = frozenset({"bin"})
SKIPPED_SUFFIXES = frozenset({".pyc", ".pyo"})
_TRIVIA_TOKENS = frozenset(
    {tokenize.NL, tokenize.NEWLINE, tokenize.COMMENT, tokenize.INDENT, tokenize.DEDENT}
)

MAIN_TEMPLATE = '''\
# Generated by shipwright; runs the server entry module.
import runpy

runpy.run_module({module!r}, run_name="__main__", alter_sys=True)
'''


def normalize_name(name: str) -> str:
    """Normalize a distribution or import name for comparison."""
    return re.sub(r"[-_.]+", "_", name).lower()


def bundle_filename(config: BuildConfiguration) -> str:
    """File name of the bundled server inside the artifact."""
    if config.module_format == ModuleFormat.ZIPAPP:
        return "server.pyz"
    return "server.py"


class ServerBundler:
    """
    Bundle a server entry module for a target runtime.

    Supports two module formats:
    - zipapp: the whole server tree as a deterministic ``.pyz`` archive
    - module: the entry file alone, for single-file servers

    Placeholder identifiers from ``config.defines`` are replaced with Python
    literals in every bundled source, fixing environment-sensitive constants
    at build time. String literals, comments and attribute names are left
    untouched.
    """

    def __init__(self, config: BuildConfiguration):
        self._config = config
        self._externals = {normalize_name(n) for n in config.external}
        self._define_literals = {key: repr(value) for key, value in config.defines.items()}

    def bundle(self, output_dir: Path) -> Path:
        """
        Write the bundled server into ``output_dir``.

        Args:
            output_dir: Directory receiving the bundle (created if needed)

        Returns:
            Path to the bundled file

        Raises:
            BuildError: If the entry is missing or a source fails to compile
        """
        entry = self._config.server_entry
        root = self._config.bundle_root

        if not entry.is_file():
            raise BuildError(f"Server entry not found: {entry}", step="bundle")
        try:
            entry_rel = entry.resolve().relative_to(root.resolve())
        except ValueError as e:
            raise BuildError(
                f"Server entry {entry} is outside server root {root}",
                step="bundle",
            ) from e

        output_dir.mkdir(parents=True, exist_ok=True)
        target = output_dir / bundle_filename(self._config)

        if self._config.module_format == ModuleFormat.MODULE:
            target.write_bytes(self._render(entry, entry_rel.as_posix()))
        else:
            self._write_zipapp(target, self._collect(root, entry_rel))
            target.chmod(0o755)

        logger.info(f"Bundled server into {target} ({self._config.module_format.value})")
        return target

    def _collect(self, root: Path, entry_rel: Path) -> dict[str, bytes]:
        """Gather archive members, keyed by archive name."""
        members: dict[str, bytes] = {}

        if self._config.external_policy == ExternalPolicy.LISTED and self._config.vendor_dir:
            for arcname, path in self._walk(self._config.vendor_dir):
                members[arcname] = self._render(path, arcname)

        # Server sources win over vendored files with the same name
        for arcname, path in self._walk(root):
            members[arcname] = self._render(path, arcname)

        module = ".".join(entry_rel.with_suffix("").parts)
        if module == "__main__":
            return members
        if "__main__.py" in members:
            raise BuildError(
                "Server root already contains __main__.py but the entry is another module",
                step="bundle",
            )
        members["__main__.py"] = MAIN_TEMPLATE.format(module=module).encode()
        return members

    def _walk(self, base: Path):
        """Yield (arcname, path) for bundleable files under ``base``."""
        base = base.resolve()
        output = self._config.output_dir.resolve()

        for dirpath, dirnames, filenames in os.walk(base):
            current = Path(dirpath)
            top_level = current == base
            dirnames[:] = sorted(
                d
                for d in dirnames
                if not d.startswith(".")
                and d not in SKIPPED_NAMES
                and (current / d).resolve() != output
                and not (top_level and (d in TOP_LEVEL_SKIPPED_NAMES or self._is_external(d)))
            )
            for name in sorted(filenames):
                path = current / name
                if name.startswith(".") or path.suffix in SKIPPED_SUFFIXES:
                    continue
                if top_level and self._is_external(name):
                    continue
                yield path.relative_to(base).as_posix(), path

    def _is_external(self, name: str) -> bool:
        """Whether a top-level file or directory belongs to a declared external."""
        if not self._externals:
            return False
        if name.endswith((".dist-info", ".egg-info")):
            project = name.rsplit(".", 1)[0].split("-", 1)[0]
            return normalize_name(project) in self._externals
        stem = name[:-3] if name.endswith(".py") else name
        return normalize_name(stem) in self._externals

    def _render(self, path: Path, arcname: str) -> bytes:
        """Read a member, substituting defines and syntax-checking Python sources."""
        data = path.read_bytes()
        if path.suffix != ".py":
            return data

        try:
            source = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BuildError(
                f"Source file is not valid UTF-8: {arcname}",
                step="bundle",
                diagnostic=str(e),
            ) from e
        source = self._substitute_defines(source)

        try:
            compile(source, arcname, "exec")
        except SyntaxError as e:
            raise BuildError(
                f"Syntax error in {arcname}",
                step="bundle",
                diagnostic="".join(traceback.format_exception_only(type(e), e)),
            ) from e
        return source.encode("utf-8")

    def _substitute_defines(self, source: str) -> str:
        """Replace define names used as identifiers; strings, comments and attributes are kept."""
        if not self._define_literals:
            return source

        replacements = []
        previous = None
        try:
            for token in tokenize.generate_tokens(io.StringIO(source).readline):
                if (
                    token.type == tokenize.NAME
                    and token.string in self._define_literals
                    and not (previous is not None and previous.string == ".")
                ):
                    replacements.append(token)
                if token.type not in _TRIVIA_TOKENS:
                    previous = token
        except (tokenize.TokenError, SyntaxError):
            # compile() reports the problem with a proper diagnostic
            return source

        lines = io.StringIO(source).readlines()
        for token in reversed(replacements):
            row, start = token.start
            end = token.end[1]
            line = lines[row - 1]
            lines[row - 1] = line[:start] + self._define_literals[token.string] + line[end:]
        return "".join(lines)

    def _write_zipapp(self, target: Path, members: dict[str, bytes]) -> None:
        with open(target, "wb") as fh:
            fh.write(f"#!/usr/bin/env {self._config.runtime}\n".encode())
            with zipfile.ZipFile(fh, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                for arcname in sorted(members):
                    info = zipfile.ZipInfo(arcname, date_time=ZIP_EPOCH)
                    info.compress_type = zipfile.ZIP_DEFLATED
                    info.external_attr = 0o644 << 16
                    archive.writestr(info, members[arcname])

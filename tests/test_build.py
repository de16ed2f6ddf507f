"""Tests for the asset compiler, build commands and server bundler."""

import subprocess
import sys
import zipfile
from pathlib import Path

import pytest

from shipwright.build import AssetCompiler, ServerBundler, bundle_filename, run_build_command
from shipwright.core.exceptions import BuildError
from shipwright.core.models import BuildConfiguration, ExternalPolicy, ModuleFormat


class TestRunBuildCommand:
    """Tests for run_build_command."""

    def test_success(self, temp_dir: Path) -> None:
        result = run_build_command([sys.executable, "-c", "print('ok')"], step="assets", cwd=temp_dir)
        assert result.stdout.strip() == "ok"

    def test_failure_passes_diagnostic_through(self, temp_dir: Path) -> None:
        script = "import sys; sys.stderr.write('src/App.tsx:3:7 error TS1005\\n'); sys.exit(2)"
        with pytest.raises(BuildError) as exc_info:
            run_build_command([sys.executable, "-c", script], step="assets", cwd=temp_dir)
        assert exc_info.value.returncode == 2
        assert exc_info.value.step == "assets"
        assert exc_info.value.diagnostic == "src/App.tsx:3:7 error TS1005\n"

    def test_missing_executable(self, temp_dir: Path) -> None:
        with pytest.raises(BuildError, match="could not be started"):
            run_build_command(["definitely-not-a-real-tool-xyz"], step="assets", cwd=temp_dir)


class TestAssetCompiler:
    """Tests for AssetCompiler."""

    def test_copy_rewrites_root_absolute_references(self, project_dir: Path, temp_dir: Path) -> None:
        output = AssetCompiler(project_dir / "client").compile(temp_dir / "out")

        html = (output / "index.html").read_text()
        assert 'href="assets/style.css"' in html
        assert 'src="assets/app.js"' in html
        assert 'href="./"' in html
        assert 'href="//cdn.example.com/favicon.ico"' in html
        assert '"/assets' not in html

        css = (output / "assets" / "style.css").read_text()
        assert "url(../img/bg.png)" in css

    def test_non_utf8_text_is_rewritten_byte_for_byte(self, project_dir: Path, temp_dir: Path) -> None:
        (project_dir / "client" / "assets" / "legacy.css").write_bytes(
            b"/* \xa9 Example GmbH */\nh1 { background: url(/img/bg.png); }\n"
        )
        output = AssetCompiler(project_dir / "client").compile(temp_dir / "out")

        assert (output / "assets" / "legacy.css").read_bytes() == (
            b"/* \xa9 Example GmbH */\nh1 { background: url(../img/bg.png); }\n"
        )

    def test_hidden_files_are_not_copied(self, project_dir: Path, temp_dir: Path) -> None:
        output = AssetCompiler(project_dir / "client").compile(temp_dir / "out")
        assert not (output / ".env.local").exists()
        assert (output / "img" / "bg.png").read_bytes() == b"\x89PNG\r\n"

    def test_output_is_replaced(self, project_dir: Path, temp_dir: Path) -> None:
        output = temp_dir / "out"
        output.mkdir()
        (output / "stale.js").write_text("old")
        AssetCompiler(project_dir / "client").compile(output)
        assert not (output / "stale.js").exists()

    def test_missing_entry_document(self, project_dir: Path, temp_dir: Path) -> None:
        (project_dir / "client" / "index.html").unlink()
        with pytest.raises(BuildError, match="entry document"):
            AssetCompiler(project_dir / "client").compile(temp_dir / "out")

    def test_missing_source(self, temp_dir: Path) -> None:
        with pytest.raises(BuildError, match="not found"):
            AssetCompiler(temp_dir / "nowhere").compile(temp_dir / "out")

    def test_external_compiler_command(self, project_dir: Path, temp_dir: Path) -> None:
        script = (
            "import pathlib, sys; out = pathlib.Path(sys.argv[1]); out.mkdir(); "
            "(out / 'index.html').write_text('<script src=\"/main.js\"></script>')"
        )
        compiler = AssetCompiler(project_dir / "client", command=[sys.executable, "-c", script, "{out}"])
        output = compiler.compile(temp_dir / "out")
        assert (output / "index.html").read_text() == '<script src="main.js"></script>'

    def test_failing_compiler_aborts(self, project_dir: Path, temp_dir: Path) -> None:
        script = "import sys; print('Type error in App.tsx', file=sys.stderr); sys.exit(1)"
        compiler = AssetCompiler(project_dir / "client", command=[sys.executable, "-c", script])
        with pytest.raises(BuildError) as exc_info:
            compiler.compile(temp_dir / "out")
        assert "Type error in App.tsx" in exc_info.value.diagnostic


class TestServerBundler:
    """Tests for ServerBundler."""

    def test_zipapp_contents(self, build_config: BuildConfiguration, temp_dir: Path) -> None:
        bundle = ServerBundler(build_config).bundle(temp_dir / "stage")
        assert bundle.name == bundle_filename(build_config) == "server.pyz"
        assert bundle.read_bytes().startswith(f"#!/usr/bin/env {sys.executable}\n".encode())

        with zipfile.ZipFile(bundle) as archive:
            assert sorted(archive.namelist()) == ["__main__.py", "app.py", "helpers.py"]
            app_source = archive.read("app.py").decode()
            main_source = archive.read("__main__.py").decode()

        assert "MODE = 'production'" in app_source
        assert "__EXECUTION_MODE__" not in app_source
        assert "run_module('app'" in main_source

    def test_zipapp_is_deterministic(self, build_config: BuildConfiguration, temp_dir: Path) -> None:
        bundler = ServerBundler(build_config)
        first = bundler.bundle(temp_dir / "one").read_bytes()
        second = bundler.bundle(temp_dir / "two").read_bytes()
        assert first == second

    def test_zipapp_runs(self, build_config: BuildConfiguration, temp_dir: Path) -> None:
        bundle = ServerBundler(build_config).bundle(temp_dir / "stage")
        result = subprocess.run(
            [sys.executable, str(bundle)], capture_output=True, text=True, timeout=30
        )
        assert result.returncode == 0, result.stderr
        assert result.stdout.strip() == "running in production mode"

    def test_custom_defines(self, build_config: BuildConfiguration, temp_dir: Path) -> None:
        config = build_config.model_copy(update={"defines": {"__EXECUTION_MODE__": "staging"}})
        bundle = ServerBundler(config).bundle(temp_dir / "stage")
        with zipfile.ZipFile(bundle) as archive:
            assert "MODE = 'staging'" in archive.read("app.py").decode()

    def test_defines_leave_strings_and_comments_alone(
        self, build_config: BuildConfiguration, project_dir: Path, temp_dir: Path
    ) -> None:
        (project_dir / "server" / "labels.py").write_text(
            "LABEL = __EXECUTION_MODE__  # __EXECUTION_MODE__ is set at build time\n"
            'NAME = "__EXECUTION_MODE__"\n'
            "ATTR = config.__EXECUTION_MODE__\n"
        )
        bundle = ServerBundler(build_config).bundle(temp_dir / "stage")
        with zipfile.ZipFile(bundle) as archive:
            source = archive.read("labels.py").decode()

        assert source == (
            "LABEL = 'production'  # __EXECUTION_MODE__ is set at build time\n"
            'NAME = "__EXECUTION_MODE__"\n'
            "ATTR = config.__EXECUTION_MODE__\n"
        )

    def test_skipped_directories(
        self, build_config: BuildConfiguration, project_dir: Path, temp_dir: Path
    ) -> None:
        server = project_dir / "server"
        (server / "bin").mkdir()
        (server / "bin" / "run.py").write_text("print('launcher')\n")
        (server / "lib" / "bin").mkdir(parents=True)
        (server / "lib" / "bin" / "tool.py").write_text("TOOL = 1\n")
        (server / "node_modules" / "left-pad").mkdir(parents=True)
        (server / "node_modules" / "left-pad" / "index.js").write_text("module.exports = 1;\n")

        bundle = ServerBundler(build_config).bundle(temp_dir / "stage")
        with zipfile.ZipFile(bundle) as archive:
            names = archive.namelist()

        assert "lib/bin/tool.py" in names
        assert "bin/run.py" not in names
        assert not any(n.startswith("node_modules") for n in names)

    def test_non_utf8_source_names_the_file(
        self, build_config: BuildConfiguration, project_dir: Path, temp_dir: Path
    ) -> None:
        (project_dir / "server" / "legacy.py").write_bytes(b"# -*- coding: latin-1 -*-\nOWNER = '\xa9'\n")
        with pytest.raises(BuildError, match="legacy.py") as exc_info:
            ServerBundler(build_config).bundle(temp_dir / "stage")
        assert exc_info.value.step == "bundle"
        assert "utf-8" in exc_info.value.diagnostic

    def test_externals_are_not_inlined(
        self, build_config: BuildConfiguration, project_dir: Path, temp_dir: Path
    ) -> None:
        server = project_dir / "server"
        (server / "fastapi").mkdir()
        (server / "fastapi" / "__init__.py").write_text("VERSION = 1\n")
        (server / "fastapi-0.110.0.dist-info").mkdir()
        (server / "fastapi-0.110.0.dist-info" / "METADATA").write_text("Name: fastapi\n")
        (server / "__pycache__").mkdir()
        (server / "__pycache__" / "app.cpython-312.pyc").write_bytes(b"\x00")

        bundle = ServerBundler(build_config).bundle(temp_dir / "stage")
        with zipfile.ZipFile(bundle) as archive:
            names = archive.namelist()
        assert not any(n.startswith("fastapi") for n in names)
        assert not any("__pycache__" in n for n in names)

    def test_listed_policy_inlines_vendor_dir(
        self, build_config: BuildConfiguration, temp_dir: Path
    ) -> None:
        vendor = temp_dir / "vendor"
        (vendor / "tinylib").mkdir(parents=True)
        (vendor / "tinylib" / "__init__.py").write_text("NAME = 'tiny'\n")
        config = build_config.model_copy(
            update={"external_policy": ExternalPolicy.LISTED, "vendor_dir": vendor}
        )
        bundle = ServerBundler(config).bundle(temp_dir / "stage")
        with zipfile.ZipFile(bundle) as archive:
            assert "tinylib/__init__.py" in archive.namelist()

    def test_module_format(self, build_config: BuildConfiguration, temp_dir: Path) -> None:
        config = build_config.model_copy(update={"module_format": ModuleFormat.MODULE})
        bundle = ServerBundler(config).bundle(temp_dir / "stage")
        assert bundle.name == "server.py"
        assert "MODE = 'production'" in bundle.read_text()

    def test_syntax_error_reports_diagnostic(
        self, build_config: BuildConfiguration, project_dir: Path, temp_dir: Path
    ) -> None:
        (project_dir / "server" / "broken.py").write_text("def broken(:\n    pass\n")
        with pytest.raises(BuildError) as exc_info:
            ServerBundler(build_config).bundle(temp_dir / "stage")
        assert exc_info.value.step == "bundle"
        assert "broken.py" in str(exc_info.value)
        assert "SyntaxError" in exc_info.value.diagnostic

    def test_missing_entry(self, build_config: BuildConfiguration, temp_dir: Path) -> None:
        config = build_config.model_copy(update={"server_entry": temp_dir / "missing.py"})
        with pytest.raises(BuildError, match="not found"):
            ServerBundler(config).bundle(temp_dir / "stage")

    def test_entry_outside_root(
        self, build_config: BuildConfiguration, project_dir: Path, temp_dir: Path
    ) -> None:
        config = build_config.model_copy(update={"server_root": project_dir / "client"})
        with pytest.raises(BuildError, match="outside server root"):
            ServerBundler(config).bundle(temp_dir / "stage")

    def test_conflicting_main_module(
        self, build_config: BuildConfiguration, project_dir: Path, temp_dir: Path
    ) -> None:
        (project_dir / "server" / "__main__.py").write_text("print('other')\n")
        with pytest.raises(BuildError, match="__main__.py"):
            ServerBundler(build_config).bundle(temp_dir / "stage")

"""Tests for the build pipeline."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from shipwright.artifact import ArtifactPackager, verify_artifact
from shipwright.core.exceptions import BuildError, ConfigurationError
from shipwright.core.models import BuildConfiguration
from shipwright.pipeline import BuildPipeline

ENV = {"DATABASE_URL": "postgres://localhost/app"}


class TestBuildPipeline:
    """Tests for BuildPipeline."""

    def test_missing_variable_stops_before_any_build_step(self, build_config: BuildConfiguration) -> None:
        compiler = MagicMock()
        bundler = MagicMock()
        packager = MagicMock()
        pipeline = BuildPipeline(
            build_config, asset_compiler=compiler, bundler=bundler, packager=packager
        )

        with pytest.raises(ConfigurationError) as exc_info:
            pipeline.run({})

        assert exc_info.value.missing == ["DATABASE_URL"]
        compiler.compile.assert_not_called()
        bundler.bundle.assert_not_called()
        packager.package.assert_not_called()
        assert not build_config.output_dir.exists()

    def test_full_build(self, build_config: BuildConfiguration) -> None:
        result = BuildPipeline(build_config).run(ENV)

        assert result.steps == ["validate", "assets", "bundle", "package"]
        assert result.environment.missing_optional == ["STRIPE_SECRET_KEY"]
        assert result.duration_ms >= 0
        verify_artifact(result.artifact.path)
        assert (result.artifact.path / "public" / "index.html").is_file()

    def test_sequential_build(self, build_config: BuildConfiguration) -> None:
        result = BuildPipeline(build_config, parallel=False).run(ENV)
        assert result.steps == ["validate", "assets", "bundle", "package"]
        verify_artifact(result.artifact.path)

    def test_parallel_and_sequential_agree(self, build_config: BuildConfiguration, temp_dir: Path) -> None:
        parallel = BuildPipeline(build_config).run(ENV)
        first = parallel.artifact.manifest_path.read_bytes()

        config = build_config.model_copy(update={"output_dir": temp_dir / "dist-seq"})
        sequential = BuildPipeline(config, parallel=False).run(ENV)
        assert sequential.artifact.manifest_path.read_bytes() == first

    def test_server_only_build(self, build_config: BuildConfiguration) -> None:
        config = build_config.model_copy(update={"assets_source": None})
        result = BuildPipeline(config).run(ENV)
        assert result.steps == ["validate", "bundle", "package"]
        assert result.artifact.manifest.assets_dir is None

    def test_build_failure_leaves_no_artifact(
        self, build_config: BuildConfiguration, project_dir: Path
    ) -> None:
        (project_dir / "server" / "routes.py").write_text("def handler(:\n")
        with pytest.raises(BuildError):
            BuildPipeline(build_config).run(ENV)
        assert not build_config.output_dir.exists()

    def test_staging_is_cleaned_up(self, build_config: BuildConfiguration) -> None:
        packager = MagicMock(wraps=ArtifactPackager(build_config))
        BuildPipeline(build_config, packager=packager).run(ENV)

        bundle, assets = packager.package.call_args.args
        assert not bundle.exists()
        assert not assets.exists()

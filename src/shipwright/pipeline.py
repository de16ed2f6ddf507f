"""
Build pipeline.

One parameterized flow replacing the family of build/deploy scripts:
validate the environment, compile assets and bundle the server (in
parallel, into private staging directories), then package and verify.
"""

import logging
import tempfile
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from shipwright.artifact.packager import ArtifactPackager
from shipwright.build.assets import AssetCompiler
from shipwright.build.bundler import ServerBundler
from shipwright.core.models import Artifact, BuildConfiguration, EnvironmentReport
from shipwright.environment.validator import EnvironmentValidator

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Outcome of a successful pipeline run."""

    artifact: Artifact
    environment: EnvironmentReport
    duration_ms: float
    steps: list[str] = field(default_factory=list)


class BuildPipeline:
    """
    Validate, build and package one artifact.

    Collaborators are created from the configuration unless injected,
    which keeps each step replaceable in tests.
    """

    def __init__(
        self,
        config: BuildConfiguration,
        *,
        validator: EnvironmentValidator | None = None,
        asset_compiler: AssetCompiler | None = None,
        bundler: ServerBundler | None = None,
        packager: ArtifactPackager | None = None,
        parallel: bool = True,
    ):
        self._config = config
        self._validator = validator or EnvironmentValidator(config.environment)
        if asset_compiler is None and config.assets_source is not None:
            asset_compiler = AssetCompiler(config.assets_source, command=config.asset_command)
        self._asset_compiler = asset_compiler
        self._bundler = bundler or ServerBundler(config)
        self._packager = packager or ArtifactPackager(config)
        self._parallel = parallel

    @property
    def config(self) -> BuildConfiguration:
        return self._config

    def run(self, environ: Mapping[str, str]) -> BuildResult:
        """
        Execute the full pipeline.

        Args:
            environ: Environment checked by the validator gate

        Returns:
            BuildResult with the verified artifact

        Raises:
            ConfigurationError: Before any build step if variables are missing
            BuildError: If compiling or bundling fails
            PackagingIntegrityError: If packaging or verification fails
        """
        start_time = time.time()
        report = self._validator.validate(environ)
        steps = ["validate"]

        with tempfile.TemporaryDirectory(prefix="shipwright-") as staging:
            staging_dir = Path(staging)
            server_bundle, assets_dir = self._build(staging_dir)
            steps += ["bundle"] if assets_dir is None else ["assets", "bundle"]

            artifact = self._packager.package(server_bundle, assets_dir)
            steps.append("package")

        duration_ms = (time.time() - start_time) * 1000
        logger.info(f"Build of {self._config.name} completed in {duration_ms:.0f}ms")
        return BuildResult(
            artifact=artifact,
            environment=report,
            duration_ms=duration_ms,
            steps=steps,
        )

    def _build(self, staging_dir: Path) -> tuple[Path, Path | None]:
        """Run the independent build steps, each into its own staging path."""
        bundle_out = staging_dir / "server"
        assets_out = staging_dir / "assets"

        if self._asset_compiler is None:
            return self._bundler.bundle(bundle_out), None

        if not self._parallel:
            assets_dir = self._asset_compiler.compile(assets_out)
            return self._bundler.bundle(bundle_out), assets_dir

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="shipwright-build") as executor:
            assets_future = executor.submit(self._asset_compiler.compile, assets_out)
            bundle_future = executor.submit(self._bundler.bundle, bundle_out)
            # result() re-raises the step's own error
            return bundle_future.result(), assets_future.result()

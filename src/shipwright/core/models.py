"""
Core data models for Shipwright.

Build inputs and the artifact manifest use these immutable, type-safe
schemas so a build is fully described by one resolved value.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shipwright.core.exceptions import ConfigurationError, PackagingIntegrityError

MANIFEST_FILENAME = "manifest.json"
ASSETS_DIRNAME = "public"
DEFAULT_DEFINES = {"__EXECUTION_MODE__": "production"}


class ModuleFormat(str, Enum):
    """Output format of the bundled server."""

    ZIPAPP = "zipapp"
    MODULE = "module"


class ExternalPolicy(str, Enum):
    """Which third-party code the bundler may inline."""

    ALL = "all"
    LISTED = "listed"


class VariableRequirement(BaseModel):
    """A logical configuration variable, satisfiable by any of its names."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Canonical variable name")
    aliases: tuple[str, ...] = Field(default=(), description="Alternative names, in priority order")
    required: bool = True
    description: str = ""

    @property
    def names(self) -> tuple[str, ...]:
        """Canonical name followed by aliases, in lookup order."""
        return (self.name, *self.aliases)

    @classmethod
    def parse(cls, notation: str, *, required: bool = True) -> "VariableRequirement":
        """Parse ``"CANONICAL|ALIAS1|ALIAS2"`` notation."""
        names = [part.strip() for part in notation.split("|") if part.strip()]
        if not names:
            raise ConfigurationError("Empty environment variable requirement", config_key=notation)
        return cls(name=names[0], aliases=tuple(names[1:]), required=required)


class BuildConfiguration(BaseModel):
    """
    Everything one build invocation needs.

    Immutable once resolved. Relative paths are resolved against the
    directory of the configuration file by ``from_file``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(default="app", min_length=1)
    runtime: str = Field(default="python3", description="Interpreter the artifact is started with")
    module_format: ModuleFormat = ModuleFormat.ZIPAPP
    server_entry: Path
    server_root: Path | None = None
    assets_source: Path | None = None
    asset_command: tuple[str, ...] | None = None
    output_dir: Path = Path("dist")
    defines: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_DEFINES))
    external: tuple[str, ...] = ()
    external_policy: ExternalPolicy = ExternalPolicy.ALL
    vendor_dir: Path | None = None
    include: tuple[Path, ...] = ()
    environment: tuple[VariableRequirement, ...] = ()

    @field_validator("environment", mode="before")
    @classmethod
    def _parse_environment(cls, value: Any) -> Any:
        """Accept ``{"required": [...], "optional": [...]}`` shorthand."""
        if not isinstance(value, dict):
            return value
        requirements = []
        for entry in value.get("required", []):
            requirements.append(VariableRequirement.parse(entry, required=True))
        for entry in value.get("optional", []):
            requirements.append(VariableRequirement.parse(entry, required=False))
        return tuple(requirements)

    @field_validator("defines")
    @classmethod
    def _check_defines(cls, value: dict[str, str]) -> dict[str, str]:
        for key in value:
            if not key.isidentifier():
                raise ValueError(f"define key must be an identifier: {key!r}")
        return value

    @property
    def bundle_root(self) -> Path:
        """Directory the server bundle is built from."""
        return self.server_root or self.server_entry.parent

    @classmethod
    def from_file(cls, path: Path, **overrides: Any) -> "BuildConfiguration":
        """
        Load a configuration file and resolve its paths.

        Args:
            path: JSON configuration file
            **overrides: Field values taking precedence over the file

        Returns:
            Resolved BuildConfiguration

        Raises:
            ConfigurationError: If the file is missing or invalid
        """
        if not path.exists():
            raise ConfigurationError("Build configuration not found", config_file=str(path))
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON: {e}", config_file=str(path)) from e

        data.update({k: v for k, v in overrides.items() if v is not None})
        base = path.parent.resolve()
        for key in ("server_entry", "server_root", "assets_source", "output_dir", "vendor_dir"):
            if data.get(key) is not None:
                data[key] = _resolve(base, data[key])
        if data.get("include"):
            data["include"] = [_resolve(base, p) for p in data["include"]]

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(
                "Invalid build configuration",
                config_file=str(path),
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e


def _resolve(base: Path, value: str | Path) -> Path:
    candidate = Path(value)
    return candidate if candidate.is_absolute() else (base / candidate).resolve()


class Manifest(BaseModel):
    """
    Machine-readable record of how to launch an artifact.

    The single source of truth for the start command; nothing infers it
    by convention.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    module_type: ModuleFormat
    entry: str
    start_command: list[str]
    external_dependencies: list[str] = Field(default_factory=list)
    assets_dir: str | None = None
    defines: dict[str, str] = Field(default_factory=dict)
    files: dict[str, str] = Field(default_factory=dict, description="Relative path -> sha256")

    def to_json(self) -> str:
        """Serialize deterministically (sorted keys, no timestamps)."""
        return json.dumps(self.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"

    @classmethod
    def from_file(cls, path: Path) -> "Manifest":
        """
        Read a manifest from disk.

        Raises:
            PackagingIntegrityError: If the file is unreadable or not a valid manifest
        """
        try:
            return cls.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            reason = e.errors()[0]["msg"] if isinstance(e, ValidationError) else str(e)
            raise PackagingIntegrityError(
                f"Unreadable manifest: {path.name}",
                artifact_path=str(path.parent),
                problems=[f"invalid manifest: {reason}"],
            ) from e


@dataclass(frozen=True)
class Artifact:
    """A packaged deployable directory and its manifest."""

    path: Path
    manifest: Manifest

    @property
    def manifest_path(self) -> Path:
        return self.path / MANIFEST_FILENAME

    @property
    def entry_path(self) -> Path:
        return self.path / self.manifest.entry

    @classmethod
    def load(cls, path: Path) -> "Artifact":
        """Load an artifact from disk without re-verifying it."""
        manifest_path = path / MANIFEST_FILENAME
        if not manifest_path.exists():
            raise ConfigurationError("Artifact has no manifest", config_file=str(manifest_path))
        return cls(path=path, manifest=Manifest.from_file(manifest_path))


@dataclass
class EnvironmentReport:
    """Per-call snapshot of configuration variable presence."""

    present: dict[str, str] = field(default_factory=dict)
    missing_required: list[str] = field(default_factory=list)
    missing_optional: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing_required

    def enabled(self, name: str) -> bool:
        """Whether the integration behind ``name`` should run for real."""
        return name in self.present

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "present": self.present,
            "missing_required": self.missing_required,
            "missing_optional": self.missing_optional,
        }

"""
Shipwright Core Module.

Provides the build configuration, manifest schema and error taxonomy.
"""

__all__ = [
    "Artifact",
    "BuildConfiguration",
    "EnvironmentReport",
    "ExternalPolicy",
    "Manifest",
    "ModuleFormat",
    "VariableRequirement",
    # Exceptions
    "ExitCode",
    "ShipwrightError",
    "ConfigurationError",
    "BuildError",
    "PackagingIntegrityError",
    "ArtifactBusyError",
    "RuntimeLaunchError",
    "ShutdownTimeoutError",
    "exit_code_for",
    "format_exception",
]

from shipwright.core.exceptions import (
    ArtifactBusyError,
    BuildError,
    ConfigurationError,
    ExitCode,
    PackagingIntegrityError,
    RuntimeLaunchError,
    ShipwrightError,
    ShutdownTimeoutError,
    exit_code_for,
    format_exception,
)
from shipwright.core.models import (
    Artifact,
    BuildConfiguration,
    EnvironmentReport,
    ExternalPolicy,
    Manifest,
    ModuleFormat,
    VariableRequirement,
)

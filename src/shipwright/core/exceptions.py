"""
Shipwright Exception Hierarchy.

Defines the error taxonomy used across the build, package and supervise
pipeline. Every category maps to a distinct process exit code so operators
can triage failures without reading logs.
"""

from enum import IntEnum
from typing import Any


class ExitCode(IntEnum):
    """Process exit codes reported by the CLI."""

    OK = 0
    CONFIGURATION = 3
    BUILD = 4
    PACKAGING = 5
    RUNTIME = 6


class ShipwrightError(Exception):
    """
    Base exception for all Shipwright errors.

    All custom exceptions inherit from this class, allowing
    generic catch blocks and consistent error handling.
    """

    exit_code: ExitCode = ExitCode.RUNTIME

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        """
        Initialize a ShipwrightError.

        Args:
            message: Human-readable error message
            details: Optional structured data for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation with details."""
        base = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{base} ({details_str})"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(ShipwrightError):
    """
    Errors in configuration loading or validation.

    Raised when:
    - Required environment variables are not set (no alias present)
    - Build configuration files are missing or malformed
    - Configuration values are invalid
    """

    exit_code = ExitCode.CONFIGURATION

    def __init__(
        self,
        message: str,
        *,
        missing: list[str] | None = None,
        config_file: str | None = None,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize a ConfigurationError.

        Args:
            message: Human-readable error message
            missing: Canonical names of missing required variables
            config_file: Path to configuration file if applicable
            config_key: Configuration key if applicable
            details: Optional structured data for debugging
        """
        details = details or {}
        if missing:
            details["missing"] = missing
        if config_file:
            details["config_file"] = config_file
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, details=details)
        self.missing = missing or []
        self.config_file = config_file
        self.config_key = config_key


class BuildError(ShipwrightError):
    """
    Raised when the asset compiler or server bundler fails.

    The underlying diagnostic is kept verbatim in ``diagnostic`` so it can
    be shown to the operator unmodified.
    """

    exit_code = ExitCode.BUILD

    def __init__(
        self,
        message: str,
        *,
        step: str | None = None,
        diagnostic: str | None = None,
        returncode: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if step:
            details["step"] = step
        if returncode is not None:
            details["returncode"] = returncode

        super().__init__(message, details=details)
        self.step = step
        self.diagnostic = diagnostic or ""
        self.returncode = returncode


class PackagingIntegrityError(ShipwrightError):
    """
    Raised when an artifact cannot be proven self-contained.

    Covers manifest entries missing on disk, checksum mismatches, files
    not referenced by the manifest and absolute source-tree references.
    """

    exit_code = ExitCode.PACKAGING

    def __init__(
        self,
        message: str,
        *,
        artifact_path: str | None = None,
        problems: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if artifact_path:
            details["artifact_path"] = artifact_path
        if problems:
            details["problems"] = problems

        super().__init__(message, details=details)
        self.artifact_path = artifact_path
        self.problems = problems or []


class ArtifactBusyError(PackagingIntegrityError):
    """Raised when another build holds the lock for the same artifact path."""

    def __init__(
        self,
        message: str = "Another build is packaging this artifact",
        *,
        artifact_path: str | None = None,
    ):
        super().__init__(message, artifact_path=artifact_path)


class RuntimeLaunchError(ShipwrightError):
    """
    Raised when the artifact process fails to spawn or exits before
    confirming liveness.
    """

    exit_code = ExitCode.RUNTIME

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        signal_name: str | None = None,
        command: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if returncode is not None:
            details["returncode"] = returncode
        if signal_name:
            details["signal"] = signal_name
        if command:
            details["command"] = " ".join(command)

        super().__init__(message, details=details)
        self.returncode = returncode
        self.signal_name = signal_name
        self.command = command or []


class ShutdownTimeoutError(ShipwrightError):
    """
    Raised (and logged as a warning) when a child outlives its grace period.

    Shutdown still completes through a forced kill, so this does not fail
    the overall run.
    """

    def __init__(
        self,
        message: str = "Process did not exit within grace period",
        *,
        pid: int | None = None,
        grace_period: float | None = None,
    ):
        details: dict[str, Any] = {}
        if pid is not None:
            details["pid"] = pid
        if grace_period is not None:
            details["grace_period_s"] = grace_period
        super().__init__(message, details=details)
        self.pid = pid
        self.grace_period = grace_period


def format_exception(error: Exception) -> str:
    """
    Format an exception for user-friendly display.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, ShipwrightError):
        return str(error)
    return f"{error.__class__.__name__}: {error}"


def exit_code_for(error: BaseException) -> ExitCode:
    """Map an exception to the process exit code reported to operators."""
    if isinstance(error, ShipwrightError):
        return error.exit_code
    return ExitCode.RUNTIME

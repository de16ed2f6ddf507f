"""Environment validation for build and start commands."""

from shipwright.environment.validator import EnvironmentValidator

__all__ = ["EnvironmentValidator"]

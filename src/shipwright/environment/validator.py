"""
Environment validation.

Checks that every required configuration variable is present before any
build or start work begins, so a misconfigured deploy fails in
milliseconds instead of after a full build.
"""

import logging
from collections.abc import Iterable, Mapping

from shipwright.core.exceptions import ConfigurationError
from shipwright.core.models import EnvironmentReport, VariableRequirement

logger = logging.getLogger(__name__)


class EnvironmentValidator:
    """
    Validates required and optional variables against an environment.

    Each requirement may be satisfied by its canonical name or any alias;
    the first non-empty name in lookup order wins. Missing required
    variables are fatal, missing optional ones only produce warnings so the
    consuming service can degrade.
    """

    def __init__(self, requirements: Iterable[VariableRequirement] = ()):
        self._requirements = list(requirements)

    @classmethod
    def from_names(
        cls,
        required: Iterable[str] = (),
        optional: Iterable[str] = (),
    ) -> "EnvironmentValidator":
        """Build a validator from ``"NAME|ALIAS"`` strings."""
        requirements = [VariableRequirement.parse(s, required=True) for s in required]
        requirements += [VariableRequirement.parse(s, required=False) for s in optional]
        return cls(requirements)

    @property
    def requirements(self) -> list[VariableRequirement]:
        return list(self._requirements)

    def inspect(self, environ: Mapping[str, str]) -> EnvironmentReport:
        """
        Snapshot variable presence without raising.

        Args:
            environ: Environment mapping to check

        Returns:
            EnvironmentReport
        """
        report = EnvironmentReport()
        for requirement in self._requirements:
            satisfied_by = next((n for n in requirement.names if environ.get(n)), None)
            if satisfied_by is not None:
                report.present[requirement.name] = satisfied_by
                if satisfied_by != requirement.name:
                    logger.debug(f"{requirement.name} satisfied by alias {satisfied_by}")
            elif requirement.required:
                report.missing_required.append(requirement.name)
            else:
                report.missing_optional.append(requirement.name)
        return report

    def validate(self, environ: Mapping[str, str]) -> EnvironmentReport:
        """
        Check the environment, failing fast on missing required variables.

        Args:
            environ: Environment mapping to check

        Returns:
            EnvironmentReport when every required variable is present

        Raises:
            ConfigurationError: Listing every missing required variable
        """
        report = self.inspect(environ)

        for name in report.missing_optional:
            logger.warning(f"Optional variable {name} is not set; dependent features will be disabled")

        if not report.ok:
            missing = ", ".join(report.missing_required)
            logger.error(f"Missing required environment variables: {missing}")
            raise ConfigurationError(
                f"Missing required environment variables: {missing}",
                missing=report.missing_required,
            )

        logger.info(
            f"Environment validated ({len(report.present)} present, "
            f"{len(report.missing_optional)} optional missing)"
        )
        return report

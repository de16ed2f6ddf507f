"""
Process-wide settings.

Resolved once from the environment at startup and passed down explicitly;
components never read ``os.environ`` on their own.

Variables:
- SW_MODE: execution mode handed to the artifact (default: production)
- PORT: service port, legacy alias REPL_PORT (default: 5000)
- SW_HOST: bind address (default: 0.0.0.0)
- SW_GRACE_PERIOD: seconds a child gets to exit before SIGKILL (default: 3.0)
- SW_STARTUP_TIMEOUT: seconds to wait for first liveness success (default: 60.0)
- SW_DRAIN_TIMEOUT: seconds in-flight requests get on shutdown (default: 3.0)
- SW_PROBE_INTERVAL: seconds between startup probes (default: 0.25)
- SW_LOG_LEVEL: logging level name (default: INFO)
"""

import logging
import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shipwright.core.exceptions import ConfigurationError

DEFAULT_PORT = 5000
PORT_VARIABLES = ("PORT", "REPL_PORT")
ARTIFACT_DIR_VARIABLE = "SW_ARTIFACT_DIR"
MODE_VARIABLE = "SW_MODE"

LIVENESS_PATH = "/health"
READINESS_PATH = "/ready"
LEGACY_LIVENESS_PATHS = ("/", "/health/live")
LEGACY_READINESS_PATHS = ("/health/ready",)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseModel):
    """Resolved runtime settings for one process."""

    model_config = ConfigDict(frozen=True)

    mode: str = "production"
    host: str = "0.0.0.0"
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    grace_period: float = Field(default=3.0, gt=0)
    startup_timeout: float = Field(default=60.0, gt=0)
    drain_timeout: float = Field(default=3.0, ge=0)
    probe_interval: float = Field(default=0.25, gt=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "Settings":
        """
        Resolve settings from an environment mapping.

        Args:
            environ: Environment to read (defaults to os.environ)
            **overrides: Explicit values taking precedence (None is ignored)

        Returns:
            Settings instance

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}

        for name in PORT_VARIABLES:
            if env.get(name):
                values["port"] = env[name]
                break

        for key, var in (
            ("mode", MODE_VARIABLE),
            ("host", "SW_HOST"),
            ("grace_period", "SW_GRACE_PERIOD"),
            ("startup_timeout", "SW_STARTUP_TIMEOUT"),
            ("drain_timeout", "SW_DRAIN_TIMEOUT"),
            ("probe_interval", "SW_PROBE_INTERVAL"),
            ("log_level", "SW_LOG_LEVEL"),
        ):
            if env.get(var):
                values[key] = env[var]

        values.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(**values)
        except ValidationError as e:
            error = e.errors()[0]
            key = str(error["loc"][0]) if error["loc"] else None
            raise ConfigurationError(
                f"Invalid setting: {error['msg']}",
                config_key=key,
            ) from e

    @property
    def is_production(self) -> bool:
        return self.mode == "production"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for a CLI or runtime entry point."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

"""
External build command runner.

Shared by the asset compiler and any tool-driven build step. A failing
command aborts the pipeline with its diagnostic passed through verbatim.
"""

import logging
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from shipwright.core.exceptions import BuildError

logger = logging.getLogger(__name__)


def run_build_command(
    command: Sequence[str],
    *,
    step: str,
    cwd: Path,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess:
    """
    Run one build command to completion.

    Args:
        command: Argument vector (never passed through a shell)
        step: Pipeline step name used in errors and logs
        cwd: Working directory for the command
        env: Explicit environment for the command, or None to inherit

    Returns:
        The completed process

    Raises:
        BuildError: If the command cannot be started or exits nonzero
    """
    argv = list(command)
    logger.info(f"[{step}] running: {' '.join(argv)}")

    try:
        result = subprocess.run(
            argv,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            capture_output=True,
            text=True,
            shell=False,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise BuildError(
            f"{step} command could not be started: {argv[0]}",
            step=step,
            diagnostic=str(e),
        ) from e

    if result.returncode != 0:
        raise BuildError(
            f"{step} command failed with exit code {result.returncode}",
            step=step,
            diagnostic=result.stderr or result.stdout,
            returncode=result.returncode,
        )

    if result.stdout:
        logger.debug(f"[{step}] output:\n{result.stdout}")
    return result

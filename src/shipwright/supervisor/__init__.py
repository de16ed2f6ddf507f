"""
Artifact process supervision.

Example:
    from shipwright.supervisor import ProcessSupervisor

    report = ProcessSupervisor(artifact, settings, base_env=env).run()
"""

__all__ = [
    "ExitReport",
    "HealthProbe",
    "ProcessState",
    "ProcessSupervisor",
    "SupervisedProcess",
]

from shipwright.supervisor.probe import HealthProbe
from shipwright.supervisor.process import ExitReport, ProcessState, SupervisedProcess
from shipwright.supervisor.supervisor import ProcessSupervisor

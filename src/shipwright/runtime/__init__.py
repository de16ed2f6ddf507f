"""
Runtime side of an artifact: liveness, readiness and graceful drain.

Import explicitly from the server entry: from shipwright.runtime import HealthServer
"""

__all__ = [
    "HealthServer",
    "HealthState",
    "mount_assets",
]

from shipwright.runtime.assets import mount_assets
from shipwright.runtime.server import HealthServer
from shipwright.runtime.state import HealthState

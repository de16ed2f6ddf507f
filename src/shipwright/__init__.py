"""
Shipwright - build, package and supervise a self-contained web service.

Turns a static UI asset tree and a server entry module into one
deployable artifact, then runs it with crash-safe signal handling and
pollable liveness/readiness endpoints.
"""

__version__ = "0.1.0"

# The runtime health server is imported explicitly by the launched artifact:
# from shipwright.runtime import HealthServer

__all__ = ["__version__"]

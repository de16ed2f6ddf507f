"""
Artifact packaging and verification.

Example:
    from shipwright.artifact import ArtifactPackager, verify_artifact

    packager = ArtifactPackager(config)
    artifact = packager.package(server_bundle, assets_dir)
    verify_artifact(artifact.path)
"""

__all__ = [
    "ArtifactLock",
    "ArtifactPackager",
    "file_sha256",
    "verify_artifact",
]

from shipwright.artifact.lock import ArtifactLock
from shipwright.artifact.packager import ArtifactPackager, file_sha256, verify_artifact

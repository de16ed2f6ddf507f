"""
Build steps.

The asset compiler and the server bundler are independent: they share no
mutable state and each writes only its own output path.
"""

__all__ = [
    "AssetCompiler",
    "ServerBundler",
    "bundle_filename",
    "run_build_command",
]

from shipwright.build.assets import AssetCompiler
from shipwright.build.bundler import ServerBundler, bundle_filename
from shipwright.build.commands import run_build_command

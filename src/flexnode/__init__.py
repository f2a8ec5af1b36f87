"""aks-flex-node package bootstrap.

Turns a bare VM into an AKS worker node attached through Azure Arc. This
module exposes lightweight metadata relied upon by the CLI and packaging.
"""
from __future__ import annotations

import os

__all__ = ["__version__", "get_version", "get_build_info"]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "0.1.0a0"


def get_version() -> str:
    """Return the current package version."""
    return __version__


def get_build_info() -> dict[str, str]:
    """Return version metadata, including release pipeline stamps when present."""
    return {
        "version": __version__,
        "git_commit": os.environ.get("FLEXNODE_GIT_COMMIT", "unknown"),
        "build_time": os.environ.get("FLEXNODE_BUILD_TIME", "unknown"),
    }

"""
Angular Upgrade Orchestrator

A Python tool that migrates an Angular project across several major versions,
one version boundary at a time, with checkpoints and rollback on failure.
"""

__version__ = "0.3.0"
__author__ = "ng-upgrade maintainers"


def get_version():
    """Get the current version of the Angular Upgrade Orchestrator."""
    return __version__


def get_full_name_with_version() -> str:
    """
    Get the full tool name with version.

    Returns:
        Full name string (e.g., "Angular Upgrade Orchestrator v0.3.0")
    """
    return f"Angular Upgrade Orchestrator v{__version__}"


__all__ = ['get_version', 'get_full_name_with_version']

"""
Validation Module

Build, test, lint, runtime and compatibility checks against the project.
"""

from .runner import ValidationRunner

__all__ = ['ValidationRunner']

"""
Capabilities Module

Per-version prerequisites, breaking changes and validation specs.
"""

from .base import VersionCapabilityLookup
from .angular import AngularCapabilityLookup

__all__ = ['VersionCapabilityLookup', 'AngularCapabilityLookup']

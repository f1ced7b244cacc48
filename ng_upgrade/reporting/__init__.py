"""
Reporting Module

Renders upgrade results for humans and tools.
"""

from .base import ReportGenerator
from .json_reporter import JSONReporter

__all__ = ['ReportGenerator', 'JSONReporter']

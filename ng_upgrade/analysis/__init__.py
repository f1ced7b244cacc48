"""
Analysis Module

Inspects a project before an upgrade run.
"""

from .base import ProjectAnalyzer
from .project_analyzer import AngularProjectAnalyzer

__all__ = ['ProjectAnalyzer', 'AngularProjectAnalyzer']

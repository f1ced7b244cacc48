"""
Abstract base classes for project analysis.
"""

from abc import ABC, abstractmethod

from ..models import ProjectAnalysis


class ProjectAnalyzer(ABC):
    """Abstract base class for project analyzers."""

    @abstractmethod
    def analyze(self, project_path: str) -> ProjectAnalysis:
        """
        Analyze a project before upgrading it.

        Args:
            project_path: Root directory of the project

        Returns:
            ProjectAnalysis; only current_version is required by the orchestrator

        Raises:
            AnalysisError: If the project cannot be analyzed
        """
        pass

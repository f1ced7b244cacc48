"""
Default project analyzer for Angular workspaces.
"""

import json
import logging
import os
from typing import Dict

from ..exceptions import AnalysisError
from ..models import ProjectAnalysis, VersionIdentifier
from .base import ProjectAnalyzer

logger = logging.getLogger(__name__)

# Marker file -> build system, checked in order
BUILD_SYSTEM_MARKERS = (
    ('nx.json', 'nx'),
    ('angular.json', 'angular-cli'),
    ('webpack.config.js', 'webpack'),
)


class AngularProjectAnalyzer(ProjectAnalyzer):
    """Reads package.json and angular.json to describe the project."""

    def __init__(self, core_package: str = '@angular/core'):
        self.core_package = core_package

    def analyze(self, project_path: str) -> ProjectAnalysis:
        if not os.path.isdir(project_path):
            raise AnalysisError("directory does not exist", project_path)

        manifest = self._load_json(os.path.join(project_path, 'package.json'), project_path, required=True)
        dependencies: Dict[str, str] = {}
        dependencies.update(manifest.get('dependencies') or {})
        dependencies.update(manifest.get('devDependencies') or {})

        declared = dependencies.get(self.core_package)
        if not declared:
            raise AnalysisError(f"{self.core_package} is not declared in package.json", project_path)
        try:
            current_version = VersionIdentifier.parse(declared)
        except ValueError as e:
            raise AnalysisError(f"cannot read {self.core_package} version '{declared}': {e}", project_path)

        workspace = self._load_json(os.path.join(project_path, 'angular.json'), project_path)
        analysis = ProjectAnalysis(
            current_version=current_version,
            project_type=self._detect_project_type(workspace),
            build_system=self._detect_build_system(project_path),
            dependencies=dependencies,
        )
        logger.info(
            f"Analyzed project: Angular {current_version.full}, "
            f"{analysis.project_type}, {analysis.build_system}"
        )
        return analysis

    @staticmethod
    def _detect_project_type(workspace: Dict) -> str:
        projects = workspace.get('projects') or {}
        if len(projects) > 1:
            return 'workspace'
        for project in projects.values():
            if isinstance(project, dict) and project.get('projectType') == 'library':
                return 'library'
        return 'application'

    @staticmethod
    def _detect_build_system(project_path: str) -> str:
        for marker, build_system in BUILD_SYSTEM_MARKERS:
            if os.path.exists(os.path.join(project_path, marker)):
                return build_system
        return 'other'

    @staticmethod
    def _load_json(path: str, project_path: str, required: bool = False) -> Dict:
        if not os.path.exists(path):
            if required:
                raise AnalysisError(f"{os.path.basename(path)} not found", project_path)
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise AnalysisError(f"cannot read {os.path.basename(path)}: {e}", project_path)
        return data if isinstance(data, dict) else {}

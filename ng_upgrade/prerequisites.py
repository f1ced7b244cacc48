#!/usr/bin/env python3
"""
Prerequisites checker for upgrade steps.

Resolves the installed version of a tool or dependency and matches it against
an npm-style range ("^17.0.0", ">=4.9.3 <5.1.0").
"""

import json
import logging
import os
import re
from typing import Dict, List, Optional, Tuple

import semantic_version

from .commands import CommandRunner
from .exceptions import CommandFailedError, CommandTimeoutError
from .models import Prerequisite, PrerequisiteType

logger = logging.getLogger(__name__)

_VERSION_IN_OUTPUT = re.compile(r'(\d+\.\d+(?:\.\d+)?(?:-[0-9A-Za-z.-]+)?)')


def satisfies(version: str, version_range: Optional[str]) -> bool:
    """
    Check an installed version against an npm-style range.

    An empty range, "*" or "latest" accepts any version. Unparseable input
    never matches.
    """
    if not version_range or version_range.strip() in ('*', 'latest'):
        return True
    try:
        installed = semantic_version.Version.coerce(version.strip().lstrip('v'))
        return semantic_version.NpmSpec(version_range).match(installed)
    except ValueError as e:
        logger.debug(f"Cannot match version '{version}' against '{version_range}': {e}")
        return False


class PrerequisiteChecker:
    """Check prerequisites for upgrade steps."""

    # Commands used to discover installed tool versions
    TOOL_VERSION_COMMANDS = {
        'node': ['node', '--version'],
        'npm': ['npm', '--version'],
        'typescript': ['npx', '--no-install', 'tsc', '--version'],
        'yarn': ['yarn', '--version'],
        'git': ['git', '--version'],
    }

    MANIFEST_SECTIONS = ('dependencies', 'devDependencies')

    def __init__(self, project_path: str, command_runner: CommandRunner):
        self.project_path = project_path
        self.command_runner = command_runner

    def check(self, prerequisite: Prerequisite) -> bool:
        """Check a single prerequisite. Failures are reported as False."""
        try:
            if prerequisite.type == PrerequisiteType.ENVIRONMENT_CAPABILITY:
                return self._check_environment(prerequisite)

            installed = self.installed_version(prerequisite)
            if installed is None:
                logger.debug(f"{prerequisite.name} is not installed")
                return False

            ok = satisfies(installed, prerequisite.required_version_range)
            logger.debug(
                f"{prerequisite.name} {installed} "
                f"{'satisfies' if ok else 'does not satisfy'} {prerequisite.required_version_range}"
            )
            return ok
        except Exception as e:
            logger.warning(f"Prerequisite check failed for {prerequisite.name}: {e}")
            return False

    def check_all(self, prerequisites: List[Prerequisite]) -> Tuple[bool, List[str]]:
        """
        Check a list of prerequisites.

        Returns:
            Tuple of (all critical prerequisites met, names of unmet prerequisites)
        """
        missing = []
        critical_ok = True
        for prerequisite in prerequisites:
            if not self.check(prerequisite):
                missing.append(prerequisite.name)
                if prerequisite.critical:
                    critical_ok = False
        return critical_ok, missing

    def installed_version(self, prerequisite: Prerequisite) -> Optional[str]:
        """Resolve the currently installed version of a tool or dependency."""
        if prerequisite.type == PrerequisiteType.DEPENDENCY_VERSION:
            return self._dependency_version(prerequisite.name)
        if prerequisite.type == PrerequisiteType.TOOL_VERSION:
            return self._tool_version(prerequisite.name, prerequisite.timeout)
        return None

    def _tool_version(self, tool: str, timeout: float) -> Optional[str]:
        command = self.TOOL_VERSION_COMMANDS.get(tool.lower(), [tool, '--version'])
        try:
            result = self.command_runner.run(command, cwd=self.project_path, timeout=timeout)
        except (CommandFailedError, CommandTimeoutError) as e:
            logger.warning(f"{tool} is not available: {e}")
            return None

        if not result.success:
            return None
        match = _VERSION_IN_OUTPUT.search(result.output)
        return match.group(1) if match else None

    def _dependency_version(self, name: str) -> Optional[str]:
        manifest = self._read_manifest()
        for section in self.MANIFEST_SECTIONS:
            declared = (manifest.get(section) or {}).get(name)
            if declared:
                match = _VERSION_IN_OUTPUT.search(str(declared))
                if match:
                    return match.group(1)
                # Single-number ranges such as "^17"
                digits = re.search(r'\d+', str(declared))
                return digits.group(0) if digits else None
        return None

    def _check_environment(self, prerequisite: Prerequisite) -> bool:
        if prerequisite.required_version_range:
            installed = self._tool_version(prerequisite.name, prerequisite.timeout)
            return installed is not None and satisfies(installed, prerequisite.required_version_range)
        return self.command_runner.tool_available(
            prerequisite.name, cwd=self.project_path, timeout=prerequisite.timeout
        )

    def _read_manifest(self) -> Dict:
        manifest_path = os.path.join(self.project_path, 'package.json')
        if not os.path.exists(manifest_path):
            return {}
        with open(manifest_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def get_installation_instructions(self, missing_tools: List[str]) -> str:
        """Get installation instructions for missing tools."""
        instructions = {
            'node': 'Install Node.js from https://nodejs.org/ or use nvm: nvm install --lts',
            'npm': 'Install npm: comes with Node.js or npm install -g npm',
            'typescript': 'Install TypeScript in the project: npm install --save-dev typescript',
            'yarn': 'Install Yarn: npm install -g yarn',
            'git': 'Install Git from https://git-scm.com/downloads',
            '@angular/cli': 'Install Angular CLI: npm install --save-dev @angular/cli',
        }

        result = "Missing prerequisites installation instructions:\n"
        for tool in missing_tools:
            if tool.lower() in instructions:
                result += f"  {tool}: {instructions[tool.lower()]}\n"
            else:
                result += f"  {tool}: Please install {tool}\n"

        return result

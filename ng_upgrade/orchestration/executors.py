"""
Default step executor: bumps the framework packages and runs ng update.
"""

import json
import logging
import os
from typing import Dict, Iterable, Optional

from ..capabilities.angular import NODE_REQUIREMENTS, TYPESCRIPT_REQUIREMENTS
from ..commands import CommandRunner
from ..config import ExecutorConfig, Strategy
from ..models import UpgradeStep
from .context import ExecutionContext
from .registry import StepExecutor, StepExecutorRegistry

logger = logging.getLogger(__name__)

FAMILY_PREFIX = '@angular/'
MANIFEST_SECTIONS = ('dependencies', 'devDependencies')


class NgUpdateStepExecutor(StepExecutor):
    """
    Upgrades the project by one Angular major version.

    Rewrites every @angular/* range in package.json to ^N.0.0, moves
    typescript into the range the new major requires, and then runs
    ``ng update`` for the core and CLI packages.
    """

    def __init__(self, command_runner: CommandRunner, config: Optional[ExecutorConfig] = None,
                 typescript_ranges: Optional[Dict[int, str]] = None):
        self.command_runner = command_runner
        self.config = config or ExecutorConfig()
        self.typescript_ranges = typescript_ranges if typescript_ranges is not None else TYPESCRIPT_REQUIREMENTS

    def execute(self, project_path: str, step: UpgradeStep, context: ExecutionContext) -> None:
        major = step.to_version.major
        manifest_path = os.path.join(project_path, 'package.json')

        with open(manifest_path, 'r', encoding='utf-8') as f:
            manifest = json.load(f)

        updated = self.update_manifest(manifest, major)
        with open(manifest_path, 'w', encoding='utf-8') as f:
            json.dump(manifest, f, indent=2)
            f.write('\n')
        logger.info(f"Updated {updated} package ranges in package.json for Angular {major}")

        if not self.config.run_ng_update:
            return

        command = ['npx', 'ng', 'update', f'@angular/core@{major}', f'@angular/cli@{major}', '--allow-dirty']
        if self.config.force_on_progressive and context.options.strategy == Strategy.PROGRESSIVE:
            command.append('--force')

        self.command_runner.run(command, cwd=project_path, timeout=self.config.ng_update_timeout, check=True)

    def update_manifest(self, manifest: Dict, major: int) -> int:
        """Rewrite framework and TypeScript ranges in a parsed package.json. Returns the number changed."""
        updated = 0
        for section in MANIFEST_SECTIONS:
            declared = manifest.get(section) or {}
            for name in list(declared):
                if name.startswith(FAMILY_PREFIX):
                    new_range = f'^{major}.0.0'
                elif name == 'typescript' and major in self.typescript_ranges:
                    new_range = self.typescript_ranges[major]
                else:
                    continue
                if declared[name] != new_range:
                    declared[name] = new_range
                    updated += 1
        return updated

    def validate_prerequisites(self, project_path: str) -> bool:
        manifest_path = os.path.join(project_path, 'package.json')
        if not os.path.exists(manifest_path):
            logger.warning(f"No package.json in {project_path}")
            return False
        try:
            with open(manifest_path, 'r', encoding='utf-8') as f:
                manifest = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Cannot read package.json: {e}")
            return False
        return any('@angular/core' in (manifest.get(section) or {}) for section in MANIFEST_SECTIONS)


def create_default_registry(command_runner: CommandRunner, config: Optional[ExecutorConfig] = None,
                            versions: Optional[Iterable[int]] = None) -> StepExecutorRegistry:
    """Registry with one NgUpdateStepExecutor per supported Angular major."""
    executor = NgUpdateStepExecutor(command_runner, config)
    return StepExecutorRegistry({version: executor for version in (versions or sorted(NODE_REQUIREMENTS))})

"""
Validation runner for upgrade steps.
"""

import json
import logging
import os
import time
from typing import Callable, Dict, List, Optional

from ..commands import CommandRunner
from ..config import ValidationConfig
from ..exceptions import CommandTimeoutError
from ..models import Prerequisite, ValidationResult, ValidationSpec, ValidationType, major_of
from ..prerequisites import PrerequisiteChecker

logger = logging.getLogger(__name__)

_WARNING_MARKERS = ('WARNING', 'warning', 'WARN')

# Labels used in result messages per command-backed validation type
_COMMAND_LABELS = {
    ValidationType.BUILD: ('Build completed successfully', 'Build failed'),
    ValidationType.TEST: ('Tests passed successfully', 'Tests failed'),
    ValidationType.LINT: ('Linting passed successfully', 'Linting failed'),
    ValidationType.RUNTIME: ('Runtime validation passed', 'Runtime validation failed'),
}


class ValidationRunner:
    """Runs validation checks and prerequisite checks against a project."""

    def __init__(self, project_path: str, command_runner: CommandRunner,
                 config: Optional[ValidationConfig] = None,
                 prerequisite_checker: Optional[PrerequisiteChecker] = None):
        self.project_path = project_path
        self.command_runner = command_runner
        self.config = config or ValidationConfig()
        self.prerequisite_checker = prerequisite_checker or PrerequisiteChecker(project_path, command_runner)

        self._strategies: Dict[ValidationType, Callable[[ValidationSpec], ValidationResult]] = {
            ValidationType.BUILD: self._run_command_validation,
            ValidationType.TEST: self._run_command_validation,
            ValidationType.LINT: self._run_command_validation,
            ValidationType.RUNTIME: self._run_runtime_validation,
            ValidationType.COMPATIBILITY: self._run_compatibility_validation,
        }

    def run(self, spec: ValidationSpec) -> ValidationResult:
        """
        Run a validation check.

        Failures, including timeouts, are reported in the result and never raised.

        Args:
            spec: Validation to run

        Returns:
            ValidationResult for the check
        """
        strategy = self._strategies.get(spec.type)
        if strategy is None:
            return ValidationResult(
                success=False,
                message=f"Unknown validation type: {spec.type}",
                error="Unsupported validation type",
            )

        start_time = time.time()
        try:
            result = strategy(spec)
        except Exception as e:
            logger.error(f"Validation '{spec.description}' raised: {e}")
            result = ValidationResult(
                success=False,
                message=f"Validation failed: {spec.description}",
                error=str(e),
            )
        result.duration = round(time.time() - start_time, 2)

        log = logger.info if result.success else logger.warning
        log(f"Validation '{spec.description}': {'PASSED' if result.success else 'FAILED'} ({result.duration}s)")
        return result

    def validate_prerequisite(self, prerequisite: Prerequisite) -> bool:
        """Check a prerequisite. Never raises; failures are reported as False."""
        try:
            return self.prerequisite_checker.check(prerequisite)
        except Exception as e:
            logger.error(f"Prerequisite validation failed for {prerequisite.name}: {e}")
            return False

    def run_comprehensive(self) -> List[ValidationResult]:
        """Run build, test, lint and compatibility checks, stopping at the first required failure."""
        specs = [
            ValidationSpec(ValidationType.BUILD, 'Project build validation', required=True),
            ValidationSpec(ValidationType.TEST, 'Unit test validation', required=False),
            ValidationSpec(ValidationType.LINT, 'Code quality validation', required=False),
            ValidationSpec(ValidationType.COMPATIBILITY, 'Angular compatibility validation', required=True),
        ]

        results = []
        for spec in specs:
            result = self.run(spec)
            results.append(result)
            if spec.required and not result.success:
                break
        return results

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _default_command(self, validation_type: ValidationType) -> Optional[str]:
        if validation_type == ValidationType.LINT:
            return self.config.lint_command or self.detect_lint_command()
        return {
            ValidationType.BUILD: self.config.build_command,
            ValidationType.TEST: self.config.test_command,
            ValidationType.RUNTIME: self.config.runtime_command,
        }.get(validation_type)

    def detect_lint_command(self) -> str:
        """
        Pick the lint command the project is set up for.

        A "lint" script wins, then an eslint or tslint devDependency; anything
        else falls back to "npm run lint".
        """
        manifest = self._read_manifest() or {}
        scripts = manifest.get('scripts') or {}
        dev_dependencies = manifest.get('devDependencies') or {}

        if 'lint' in scripts:
            return 'npm run lint'
        if 'eslint' in dev_dependencies:
            return 'npx eslint src/**/*.ts'
        if 'tslint' in dev_dependencies:
            return 'npx tslint -p tsconfig.json'
        return 'npm run lint'

    def _read_manifest(self) -> Optional[Dict]:
        """Parsed package.json, or None when it is missing or unreadable."""
        manifest_path = os.path.join(self.project_path, 'package.json')
        try:
            with open(manifest_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.debug(f"Could not read {manifest_path}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def _timeout_for(self, spec: ValidationSpec) -> float:
        return spec.timeout or self.config.timeouts.get(spec.type.value, 300.0)

    def _run_command_validation(self, spec: ValidationSpec) -> ValidationResult:
        command = spec.command or self._default_command(spec.type)
        timeout = self._timeout_for(spec)
        passed_message, failed_message = _COMMAND_LABELS[spec.type]

        try:
            result = self.command_runner.run(command, cwd=self.project_path, timeout=timeout)
        except CommandTimeoutError as e:
            return ValidationResult(
                success=False,
                message=f"{spec.description} timed out after {timeout}s",
                error=str(e),
                timed_out=True,
            )

        if result.success:
            return ValidationResult(
                success=True,
                message=passed_message,
                warnings=self.extract_warnings(result.output),
            )
        return ValidationResult(
            success=False,
            message=failed_message,
            error=result.output.strip() or f"exit status {result.returncode}",
        )

    def _run_runtime_validation(self, spec: ValidationSpec) -> ValidationResult:
        if not (spec.command or self.config.runtime_command):
            return ValidationResult(
                success=True,
                message='Runtime validation skipped',
                warnings=['No runtime validation command configured'],
            )
        return self._run_command_validation(spec)

    def _run_compatibility_validation(self, spec: ValidationSpec) -> ValidationResult:
        """
        Check peer dependencies and framework package consistency.

        Reports peer dependency conflicts from the package manager and every
        package of the framework family whose major differs from the core package.
        """
        manifest_path = os.path.join(self.project_path, 'package.json')
        try:
            with open(manifest_path, 'r', encoding='utf-8') as f:
                manifest = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            return ValidationResult(
                success=False,
                message='Compatibility issues found',
                error=f"Could not read dependency manifest: {e}",
            )

        declared = {}
        declared.update(manifest.get('dependencies') or {})
        declared.update(manifest.get('devDependencies') or {})

        issues = []
        warnings = []

        timeout = self._timeout_for(spec)
        try:
            conflicts = self.find_peer_conflicts(timeout)
        except CommandTimeoutError:
            conflicts = []
            warnings.append(f"Peer dependency check timed out after {timeout}s")
        if conflicts:
            issues.append(f"Found {len(conflicts)} peer dependency conflicts")
            issues.extend(conflicts)

        issues.extend(self.find_version_mismatches(declared))
        if self.config.core_package not in declared:
            warnings.append(f"{self.config.core_package} is not declared in package.json")

        return ValidationResult(
            success=not issues,
            message='Compatibility validation passed' if not issues else 'Compatibility issues found',
            error='; '.join(issues) if issues else None,
            warnings=warnings,
        )

    def find_peer_conflicts(self, timeout: Optional[float] = None) -> List[str]:
        """
        List the peer dependency conflicts the package manager reports.

        npm exits non-zero for other tree problems too, so only the output
        lines mentioning peer dependencies are taken as conflicts.

        Args:
            timeout: Limit in seconds; defaults to the compatibility timeout

        Returns:
            Conflict lines, empty when the check is disabled

        Raises:
            CommandTimeoutError: If the listing exceeds the timeout
        """
        command = self.config.peer_dependency_command
        if not command:
            return []
        if timeout is None:
            timeout = self.config.timeouts.get(ValidationType.COMPATIBILITY.value, 60.0)

        result = self.command_runner.run(command, cwd=self.project_path, timeout=timeout)
        conflicts = [line.strip() for line in result.output.splitlines() if 'peer dep' in line.lower()]
        logger.debug(f"Peer dependency check found {len(conflicts)} conflicts")
        return conflicts

    def find_version_mismatches(self, declared: Dict[str, str]) -> List[str]:
        """List family packages whose major version differs from the core package's."""
        core = self.config.core_package
        core_major = major_of(declared.get(core))
        if core_major is None:
            return []

        issues = []
        for name, version in sorted(declared.items()):
            if name == core or not name.startswith(self.config.package_family_prefix):
                continue
            major = major_of(version)
            if major is not None and major != core_major:
                issues.append(f"Version mismatch: {name}@{version} with {core}@{declared[core]}")
        return issues

    @staticmethod
    def extract_warnings(output: str) -> List[str]:
        """Extract warning lines from command output."""
        return [line.strip() for line in output.splitlines()
                if any(marker in line for marker in _WARNING_MARKERS)]


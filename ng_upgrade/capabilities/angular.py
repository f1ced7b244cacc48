"""
Angular 12-20 capability tables.
"""

from typing import Dict, List, Optional, Tuple

from ..config import ValidationConfig
from ..models import (
    BreakingChange,
    ChangeType,
    MigrationType,
    Prerequisite,
    PrerequisiteType,
    Severity,
    ValidationSpec,
    ValidationType,
)
from .base import VersionCapabilityLookup

NODE_REQUIREMENTS = {
    12: '>=12.20.0',
    13: '>=12.20.0',
    14: '>=14.15.0',
    15: '>=14.20.0',
    16: '>=16.14.0',
    17: '>=18.13.0',
    18: '>=18.19.1',
    19: '>=18.19.1',
    20: '>=18.19.1',
}

TYPESCRIPT_REQUIREMENTS = {
    12: '>=4.2.3 <4.4.0',
    13: '>=4.4.2 <4.6.0',
    14: '>=4.7.2 <4.8.0',
    15: '>=4.8.2 <4.10.0',
    16: '>=4.9.3 <5.1.0',
    17: '>=5.2.0 <5.3.0',
    18: '>=5.4.0 <5.5.0',
    19: '>=5.5.0 <5.6.0',
    20: '>=5.6.0 <5.7.0',
}

# (id, type, severity, description, impact, manual instructions or None)
_ChangeRow = Tuple[str, ChangeType, Severity, str, str, Optional[str]]

BREAKING_CHANGES: Dict[int, List[_ChangeRow]] = {
    12: [
        ('ng12-ivy-default', ChangeType.BUILD, Severity.MEDIUM,
         'View Engine libraries are compiled with ngcc', 'Libraries without Ivy builds slow down builds', None),
        ('ng12-strict-mode', ChangeType.CONFIG, Severity.LOW,
         'Strict mode is the default for new projects', 'Existing projects keep their settings', None),
    ],
    13: [
        ('ng13-view-engine-removal', ChangeType.BUILD, Severity.CRITICAL,
         'View Engine removed', 'Libraries must ship Ivy partial compilation output',
         'Replace or update libraries that only ship View Engine builds'),
        ('ng13-angular-package-format', ChangeType.BUILD, Severity.HIGH,
         'Angular Package Format drops UMD bundles', 'Imports of UMD bundles stop resolving', None),
        ('ng13-typescript-version', ChangeType.DEPENDENCY, Severity.MEDIUM,
         'TypeScript 4.4 required', 'Older TypeScript versions fail to compile', None),
        ('ng13-ie11-deprecation', ChangeType.CONFIG, Severity.LOW,
         'Internet Explorer 11 support removed', 'Browserslist entries for IE11 are ignored', None),
    ],
    14: [
        ('ng14-typed-forms', ChangeType.API, Severity.HIGH,
         'Strictly typed reactive forms', 'Form controls become generic',
         'Review UntypedFormControl usages added by the migration'),
        ('ng14-standalone-preview', ChangeType.API, Severity.LOW,
         'Standalone components in developer preview', 'Opt-in API', None),
    ],
    15: [
        ('ng15-standalone-stable', ChangeType.API, Severity.LOW,
         'Standalone APIs stable', 'Standalone components and directives are now stable', None),
        ('ng15-router-guards', ChangeType.API, Severity.HIGH,
         'Class-based router guards deprecated', 'Guards should move to functional form',
         'Convert class-based guards to functional guards'),
    ],
    16: [
        ('ng16-required-inputs', ChangeType.API, Severity.MEDIUM,
         'Required inputs introduced', 'New required inputs API available', None),
        ('ng16-ngcc-removal', ChangeType.BUILD, Severity.HIGH,
         'ngcc removed', 'View Engine libraries can no longer be consumed', None),
    ],
    17: [
        ('ng17-new-application-bootstrap', ChangeType.CONFIG, Severity.MEDIUM,
         'Application builder is the default', 'Builds move to esbuild', None),
        ('ng17-assets-to-public', ChangeType.CONFIG, Severity.LOW,
         'Assets can be served from public/', 'Asset configuration in angular.json changes', None),
        ('ng17-new-control-flow', ChangeType.TEMPLATE, Severity.MEDIUM,
         'Built-in control flow syntax', 'Templates can use @if, @for and @switch',
         'Run ng generate @angular/core:control-flow to migrate templates'),
        ('ng17-ssr-improvements', ChangeType.BUILD, Severity.MEDIUM,
         'SSR moves into @angular/ssr', 'Universal builders are replaced', None),
        ('ng17-angular-material-update', ChangeType.DEPENDENCY, Severity.HIGH,
         'Angular Material MDC components', 'Component styles change', 'Review Material component styling'),
    ],
    18: [
        ('ng18-material3', ChangeType.DEPENDENCY, Severity.MEDIUM,
         'Material 3 support', 'Angular Material updated with Material Design 3',
         'Review Material component designs for visual changes'),
        ('ng18-zoneless-preview', ChangeType.API, Severity.LOW,
         'Zoneless change detection in preview', 'Opt-in API', None),
    ],
    19: [
        ('ng19-standalone-default', ChangeType.API, Severity.HIGH,
         'Components are standalone by default', 'NgModule-declared components need standalone: false', None),
        ('ng19-signal-inputs', ChangeType.API, Severity.MEDIUM,
         'Signal inputs and queries stable', 'Decorator inputs continue to work', None),
    ],
    20: [
        ('ng20-incremental-hydration', ChangeType.API, Severity.MEDIUM,
         'Incremental hydration stable', 'Advanced SSR with incremental hydration',
         'Opt-in feature for SSR applications'),
        ('ng20-structural-directives', ChangeType.TEMPLATE, Severity.HIGH,
         'NgIf, NgFor and NgSwitch deprecated', 'Templates should use built-in control flow', None),
    ],
}


class AngularCapabilityLookup(VersionCapabilityLookup):
    """Capability tables for Angular major versions 12 through 20."""

    def __init__(self, validation_config: Optional[ValidationConfig] = None,
                 versions: Optional[List[int]] = None):
        self.validation_config = validation_config or ValidationConfig()
        self._versions = sorted(versions) if versions else sorted(NODE_REQUIREMENTS)

    def supported_versions(self) -> List[int]:
        return list(self._versions)

    def get_prerequisites(self, version: int) -> List[Prerequisite]:
        timeout = self.validation_config.prerequisite_timeout
        prerequisites = []

        if version in NODE_REQUIREMENTS:
            prerequisites.append(Prerequisite(
                type=PrerequisiteType.TOOL_VERSION,
                name='node',
                required_version_range=NODE_REQUIREMENTS[version],
                critical=True,
                timeout=timeout,
            ))

        # TypeScript and the CLI are bumped by the step itself, so a mismatch
        # before the step only warns
        if version in TYPESCRIPT_REQUIREMENTS:
            prerequisites.append(Prerequisite(
                type=PrerequisiteType.TOOL_VERSION,
                name='typescript',
                required_version_range=TYPESCRIPT_REQUIREMENTS[version],
                critical=False,
                timeout=timeout,
            ))

        prerequisites.append(Prerequisite(
            type=PrerequisiteType.DEPENDENCY_VERSION,
            name='@angular/cli',
            required_version_range=f'^{version}.0.0',
            critical=False,
            timeout=timeout,
        ))

        return prerequisites

    def get_breaking_changes(self, version: int) -> List[BreakingChange]:
        changes = []
        for change_id, change_type, severity, description, impact, instructions in BREAKING_CHANGES.get(version, []):
            changes.append(BreakingChange(
                id=change_id,
                version=version,
                type=change_type,
                severity=severity,
                description=description,
                impact=impact,
                migration_type=MigrationType.MANUAL if instructions else MigrationType.AUTOMATIC,
                instructions=instructions,
            ))
        return changes

    def get_validations(self, version: int, options) -> List[ValidationSpec]:
        cfg = self.validation_config
        return [
            ValidationSpec(
                type=ValidationType.BUILD,
                command=cfg.build_command,
                timeout=cfg.timeouts.get('build'),
                required=True,
                description=f'Validate build after Angular {version} upgrade',
            ),
            ValidationSpec(
                type=ValidationType.TEST,
                command=cfg.test_command,
                timeout=cfg.timeouts.get('test'),
                required=True,
                description=f'Run tests after Angular {version} upgrade',
            ),
            ValidationSpec(
                type=ValidationType.LINT,
                command=cfg.lint_command,
                timeout=cfg.timeouts.get('lint'),
                required=False,
                description=f'Lint code after Angular {version} upgrade',
            ),
        ]

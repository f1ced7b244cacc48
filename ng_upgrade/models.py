"""
Core data models for the Angular Upgrade Orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import semantic_version

from .exceptions import InvalidRangeError, NgUpgradeError

# Sentinel used as the source version of the first step in a plan
CURRENT = "current"

# Range operators and prefixes stripped before a version is parsed
_RANGE_PREFIX_CHARS = '^~>=<v '
_WILDCARDS = ('x', 'X', '*')


class PrerequisiteType(Enum):
    """Kinds of prerequisite checks."""
    TOOL_VERSION = "tool-version"
    DEPENDENCY_VERSION = "dependency-version"
    ENVIRONMENT_CAPABILITY = "environment-capability"


class ValidationType(Enum):
    """Kinds of validation checks."""
    BUILD = "build"
    TEST = "test"
    LINT = "lint"
    RUNTIME = "runtime"
    COMPATIBILITY = "compatibility"


class ChangeType(Enum):
    """Area of the project a breaking change touches."""
    API = "api"
    CONFIG = "config"
    TEMPLATE = "template"
    STYLE = "style"
    BUILD = "build"
    DEPENDENCY = "dependency"


class Severity(Enum):
    """Severity of a breaking change."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MigrationType(Enum):
    """How a breaking change gets applied."""
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    BRIDGE = "bridge"


class BuildStatus(Enum):
    """Build or test status recorded in checkpoint metadata."""
    SUCCESS = "success"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class VersionIdentifier:
    """A parsed semantic version. Plans compare only the major component."""
    major: int
    minor: int = 0
    patch: int = 0
    prerelease: str = ""

    @classmethod
    def parse(cls, version: Union[str, int, 'VersionIdentifier']) -> 'VersionIdentifier':
        """
        Parse a version string such as "17", "16.2", "^15.1.3" or "v18.0.0-rc.1".

        Raises:
            ValueError: If the string does not contain a version
        """
        if isinstance(version, VersionIdentifier):
            return version
        if isinstance(version, int):
            return cls(major=version)
        if not version:
            raise ValueError("Version string cannot be empty")

        text = str(version).strip().lstrip(_RANGE_PREFIX_CHARS)
        parts = text.split('.')
        while len(parts) > 1 and parts[-1] in _WILDCARDS:
            parts.pop()
        text = '.'.join(parts)
        if not text or any(char.isspace() for char in text):
            raise ValueError(f"Invalid version format: {version}")

        try:
            parsed = semantic_version.Version.coerce(text)
        except ValueError:
            raise ValueError(f"Invalid version format: {version}")
        # coerce() turns surplus dotted components into build metadata
        if parsed.build and '+' not in text:
            raise ValueError(f"Invalid version format: {version}")

        return cls(
            major=parsed.major,
            minor=parsed.minor,
            patch=parsed.patch,
            prerelease='.'.join(parsed.prerelease),
        )

    @property
    def full(self) -> str:
        """Canonical string form, e.g. "17.1.0"."""
        base = f"{self.major}.{self.minor}.{self.patch}"
        return f"{base}-{self.prerelease}" if self.prerelease else base

    def __str__(self) -> str:
        return self.full


def major_of(version_range: Optional[str]) -> Optional[int]:
    """
    Major version of a declared dependency range such as "^17.1.0" or ">=16 <17".

    Only the first comparator of the first alternative is read. Tags, URLs
    and paths give None.
    """
    if not version_range:
        return None
    comparators = str(version_range).split('||')[0].strip().lstrip(_RANGE_PREFIX_CHARS).split()
    if not comparators:
        return None
    try:
        return VersionIdentifier.parse(comparators[0]).major
    except ValueError:
        return None


@dataclass(frozen=True)
class Prerequisite:
    """A condition that must hold before a version boundary is crossed."""
    type: PrerequisiteType
    name: str
    required_version_range: Optional[str] = None
    critical: bool = True
    timeout: float = 30.0


@dataclass(frozen=True)
class BreakingChange:
    """A breaking change introduced by a major version."""
    id: str
    version: int
    type: ChangeType
    severity: Severity
    description: str
    impact: str
    migration_type: MigrationType = MigrationType.AUTOMATIC
    instructions: Optional[str] = None


@dataclass(frozen=True)
class ValidationSpec:
    """A validation check to run against the project."""
    type: ValidationType
    description: str
    command: Optional[str] = None
    timeout: Optional[float] = None
    required: bool = True


@dataclass(frozen=True)
class UpgradeStep:
    """One version-boundary crossing."""
    from_version: Union[VersionIdentifier, str]
    to_version: VersionIdentifier
    required: bool = True
    prerequisites: Tuple[Prerequisite, ...] = ()
    breaking_changes: Tuple[BreakingChange, ...] = ()
    validations: Tuple[ValidationSpec, ...] = ()

    @property
    def label(self) -> str:
        source = self.from_version.major if isinstance(self.from_version, VersionIdentifier) else self.from_version
        return f"{source} -> {self.to_version.major}"


@dataclass(frozen=True)
class UpgradePlan:
    """Ordered, contiguous sequence of steps from one major version to another."""
    from_version: VersionIdentifier
    to_version: VersionIdentifier
    steps: Tuple[UpgradeStep, ...]

    def __post_init__(self):
        if self.from_version.major >= self.to_version.major:
            raise InvalidRangeError(self.from_version.full, self.to_version.full)

        expected = list(range(self.from_version.major + 1, self.to_version.major + 1))
        actual = [step.to_version.major for step in self.steps]
        if actual != expected:
            raise NgUpgradeError(
                f"Upgrade plan steps must cover majors {expected} contiguously, got {actual}"
            )

    @property
    def majors(self) -> List[int]:
        return [step.to_version.major for step in self.steps]

    def __len__(self) -> int:
        return len(self.steps)


@dataclass(frozen=True)
class CheckpointMetadata:
    """State captured alongside a checkpoint."""
    dependencies: Dict[str, str] = field(default_factory=dict)
    build_status: BuildStatus = BuildStatus.UNKNOWN
    test_status: BuildStatus = BuildStatus.UNKNOWN
    project_size: int = 0
    configuration: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dependencies': dict(self.dependencies),
            'build_status': self.build_status.value,
            'test_status': self.test_status.value,
            'project_size': self.project_size,
            'configuration': self.configuration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CheckpointMetadata':
        return cls(
            dependencies=dict(data.get('dependencies') or {}),
            build_status=BuildStatus(data.get('build_status', 'unknown')),
            test_status=BuildStatus(data.get('test_status', 'unknown')),
            project_size=int(data.get('project_size', 0)),
            configuration=data.get('configuration') or {},
        )


@dataclass(frozen=True)
class Checkpoint:
    """Immutable record of a project snapshot."""
    id: str
    label: str
    version_label: str
    timestamp: datetime
    description: str
    storage_location: str
    metadata: CheckpointMetadata = field(default_factory=CheckpointMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'label': self.label,
            'version_label': self.version_label,
            'timestamp': self.timestamp.isoformat(),
            'description': self.description,
            'storage_location': self.storage_location,
            'metadata': self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Checkpoint':
        return cls(
            id=data['id'],
            label=data.get('label', data['id']),
            version_label=data.get('version_label', 'unknown'),
            timestamp=datetime.fromisoformat(data['timestamp']),
            description=data.get('description', ''),
            storage_location=data['storage_location'],
            metadata=CheckpointMetadata.from_dict(data.get('metadata') or {}),
        )


@dataclass
class ValidationResult:
    """Outcome of a single validation check."""
    success: bool
    message: str
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    timed_out: bool = False
    duration: float = 0.0


@dataclass
class RollbackResult:
    """Outcome of a rollback to a checkpoint."""
    success: bool
    checkpoint: Optional[Checkpoint]
    preserved_files: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    backup_checkpoint: Optional[Checkpoint] = None


@dataclass
class ProjectAnalysis:
    """Analysis of the project before upgrading."""
    current_version: VersionIdentifier
    project_type: str = "application"
    build_system: str = "angular-cli"
    dependencies: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class UpgradeResult:
    """Terminal record of one orchestration run."""
    success: bool
    from_version: str
    to_version: str
    completed_steps: Tuple[UpgradeStep, ...]
    checkpoints: Tuple[Checkpoint, ...]
    duration: float
    rollback_available: bool
    warnings: Tuple[str, ...] = ()
    manual_interventions: Tuple[str, ...] = ()
    error: Optional[Exception] = None
    failed_step: Optional[UpgradeStep] = None
    rollback_result: Optional[RollbackResult] = None
    rollback_error: Optional[str] = None

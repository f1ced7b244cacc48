"""
Configuration management for the Angular Upgrade Orchestrator.
"""

import os
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import yaml

from .exceptions import ConfigurationError
from .logging_config import get_logger

logger = get_logger('config')


class Strategy(Enum):
    """Balance between safety and speed of the upgrade."""
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    PROGRESSIVE = "progressive"


class CheckpointFrequency(Enum):
    """When checkpoints are taken after steps."""
    EVERY_STEP = "every-step"
    MAJOR_VERSIONS = "major-versions"
    CUSTOM = "custom"


class ValidationLevel(Enum):
    """Depth of validation after each step."""
    BASIC = "basic"
    COMPREHENSIVE = "comprehensive"


class RollbackPolicy(Enum):
    """What happens to the project when a step fails."""
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    NEVER = "never"


_ENUM_ALIASES = {
    'auto-on-failure': 'automatic',
}


@dataclass
class PlanningConfig:
    """Configuration for upgrade path planning."""
    supported_versions: List[int] = field(default_factory=lambda: list(range(12, 21)))
    max_span: int = 8
    base_minutes_per_step: float = 15.0


@dataclass
class CheckpointConfig:
    """Configuration for checkpoint storage."""
    storage_dir: str = ".ng-upgrade"
    exclude_patterns: List[str] = field(default_factory=lambda: [
        'node_modules',
        'dist',
        '.angular',
        '.git',
        'coverage',
        '.nyc_output',
        '*.log',
        '.DS_Store',
        'Thumbs.db',
    ])
    essential_files: List[str] = field(default_factory=lambda: [
        'package.json',
        'angular.json',
        'tsconfig.json',
    ])
    capture_build_status: bool = True
    capture_test_status: bool = False
    retention: int = 5
    # Runs after every restore; None skips the reinstall
    install_command: Optional[str] = "npm ci"
    install_timeout: float = 600.0


@dataclass
class ValidationConfig:
    """Configuration for validation checks."""
    build_command: str = "npm run build"
    test_command: str = "npm test -- --watch=false"
    # None picks a linter from package.json scripts and devDependencies
    lint_command: Optional[str] = None
    runtime_command: Optional[str] = None
    # Listing whose "peer dep" lines count as compatibility issues; None skips it
    peer_dependency_command: Optional[str] = "npm ls --depth=0"
    timeouts: Dict[str, float] = field(default_factory=lambda: {
        'build': 300.0,
        'test': 600.0,
        'lint': 120.0,
        'runtime': 60.0,
        'compatibility': 60.0,
    })
    prerequisite_timeout: float = 30.0
    package_family_prefix: str = "@angular/"
    core_package: str = "@angular/core"


@dataclass
class ExecutorConfig:
    """Configuration for the default step executors."""
    run_ng_update: bool = True
    ng_update_timeout: float = 900.0
    force_on_progressive: bool = True


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    log_file: Optional[str] = None
    verbose: bool = False


@dataclass
class Config:
    """Main configuration class."""
    planning: PlanningConfig = field(default_factory=PlanningConfig)
    checkpoints: CheckpointConfig = field(default_factory=CheckpointConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


@dataclass(frozen=True)
class UpgradeOptions:
    """
    Immutable options for one orchestration run.

    Runtime handles such as observers are not stored here; they travel in the
    execution context.
    """
    target_version: str
    strategy: Strategy = Strategy.BALANCED
    checkpoint_frequency: CheckpointFrequency = CheckpointFrequency.MAJOR_VERSIONS
    validation_level: ValidationLevel = ValidationLevel.BASIC
    rollback_policy: RollbackPolicy = RollbackPolicy.AUTOMATIC
    fail_on_final_validation_warnings: bool = False
    custom_checkpoint_predicate: Optional[Callable[[Any, int], bool]] = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UpgradeOptions':
        """
        Build options from plain values (e.g. parsed YAML or CLI arguments).

        Raises:
            ConfigurationError: If a value is not valid for its option
        """
        if 'target_version' not in data:
            raise ConfigurationError("Upgrade options require 'target_version'")

        kwargs = {'target_version': str(data['target_version'])}
        enum_fields = {
            'strategy': Strategy,
            'checkpoint_frequency': CheckpointFrequency,
            'validation_level': ValidationLevel,
            'rollback_policy': RollbackPolicy,
        }
        for name, enum_cls in enum_fields.items():
            if name in data and data[name] is not None:
                kwargs[name] = _coerce_enum(enum_cls, data[name], name)

        if 'fail_on_final_validation_warnings' in data:
            kwargs['fail_on_final_validation_warnings'] = bool(data['fail_on_final_validation_warnings'])
        if data.get('custom_checkpoint_predicate') is not None:
            kwargs['custom_checkpoint_predicate'] = data['custom_checkpoint_predicate']

        return cls(**kwargs)


def _coerce_enum(enum_cls, value, option_name: str):
    if isinstance(value, enum_cls):
        return value
    raw = _ENUM_ALIASES.get(str(value), str(value))
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ', '.join(member.value for member in enum_cls)
        raise ConfigurationError(f"Invalid value '{value}' for {option_name} (expected one of: {allowed})")


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from file or use defaults.

    Args:
        config_path: Optional path to configuration file

    Returns:
        Config object with loaded settings

    Raises:
        ConfigurationError: If configuration file is invalid
    """
    config = Config()

    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except OSError as e:
            raise ConfigurationError(f"Error loading configuration file: {e}")

        if config_data:
            if not isinstance(config_data, dict):
                raise ConfigurationError("Configuration file must contain a mapping at the top level")
            _update_config_from_dict(config, config_data)
            logger.info(f"Loaded configuration from {config_path}")

    elif config_path:
        logger.warning(f"Configuration file not found: {config_path}")

    _validate_config(config)
    return config


def _update_config_from_dict(config: Config, config_data: Dict) -> None:
    """
    Update configuration object from dictionary data.

    Unknown sections and keys are logged and ignored.
    """
    for section_name, section_data in config_data.items():
        section = getattr(config, section_name, None)
        if section is None:
            logger.warning(f"Ignoring unknown configuration section: {section_name}")
            continue
        if not isinstance(section_data, dict):
            raise ConfigurationError(f"Configuration section '{section_name}' must be a mapping")

        known = {f.name for f in fields(section)}
        for key, value in section_data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown configuration key: {section_name}.{key}")
                continue
            if key == 'timeouts':
                # Merge so partial overrides keep the remaining defaults
                section.timeouts.update(value or {})
            else:
                setattr(section, key, value)


def _validate_config(config: Config) -> None:
    if config.planning.max_span < 1:
        raise ConfigurationError("planning.max_span must be at least 1")
    if not config.planning.supported_versions:
        raise ConfigurationError("planning.supported_versions cannot be empty")
    if config.checkpoints.retention < 0:
        raise ConfigurationError("checkpoints.retention cannot be negative")
    if config.checkpoints.install_timeout is None or float(config.checkpoints.install_timeout) <= 0:
        raise ConfigurationError("checkpoints.install_timeout must be positive")
    for name, timeout in config.validation.timeouts.items():
        if timeout is None or float(timeout) <= 0:
            raise ConfigurationError(f"validation.timeouts.{name} must be positive")


def get_default_config_path() -> Optional[str]:
    """
    Get the default configuration file path.

    Returns:
        Path to default config file if it exists, None otherwise
    """
    possible_paths = [
        'ng_upgrade.yaml',
        'ng_upgrade.yml',
        os.path.expanduser('~/.ng_upgrade.yaml'),
        os.path.expanduser('~/.ng_upgrade.yml'),
    ]

    for path in possible_paths:
        if os.path.exists(path):
            return path

    return None

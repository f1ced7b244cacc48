"""
Custom exceptions for the Angular Upgrade Orchestrator.
"""

from typing import List, Optional


class NgUpgradeError(Exception):
    """Base exception class for all upgrade orchestration errors."""
    pass


class ConfigurationError(NgUpgradeError):
    """Raised when configuration or upgrade options are invalid."""
    pass


class AnalysisError(NgUpgradeError):
    """Raised when the project cannot be analyzed."""

    def __init__(self, message: str, project_path: str = None):
        self.project_path = project_path

        if project_path:
            message = f"Cannot analyze project '{project_path}': {message}"

        super().__init__(message)


class PlanningError(NgUpgradeError):
    """Base class for errors raised while building an upgrade plan."""

    def __init__(self, message: str, from_version: str = None, to_version: str = None):
        self.from_version = from_version
        self.to_version = to_version
        super().__init__(message)


class InvalidRangeError(PlanningError):
    """Raised when the target major version is not above the current one."""

    def __init__(self, from_version: str, to_version: str):
        message = (
            f"Invalid upgrade path: cannot upgrade from {from_version} to {to_version}. "
            "Target version must be higher than current version."
        )
        super().__init__(message, from_version, to_version)


class UnsupportedVersionError(PlanningError):
    """Raised when a major version is outside the supported set."""

    def __init__(self, version: str, supported: Optional[List[int]] = None, role: str = "Angular"):
        self.version = version
        self.supported = list(supported or [])

        message = f"{role} version {version} is not supported"
        if self.supported:
            message += f". Supported versions: {', '.join(str(v) for v in self.supported)}"

        super().__init__(message)


class ExcessiveSpanError(PlanningError):
    """Raised when an upgrade crosses more major versions than allowed."""

    def __init__(self, from_version: str, to_version: str, span: int, max_span: int):
        self.span = span
        self.max_span = max_span
        message = (
            f"Large version gap detected ({span} major versions, limit is {max_span}). "
            "Consider upgrading in smaller increments."
        )
        super().__init__(message, from_version, to_version)


class NoHandlerError(NgUpgradeError):
    """Raised when no step executor is registered for a version."""

    def __init__(self, version):
        self.version = version
        super().__init__(f"No step executor registered for Angular version {version}")


class PrerequisiteFailedError(NgUpgradeError):
    """Raised when a critical prerequisite is not satisfied."""

    def __init__(self, name: str, required_range: str = None, step_label: str = None):
        self.name = name
        self.required_range = required_range
        self.step_label = step_label

        message = f"Critical prerequisite not met: {name}"
        if required_range:
            message += f" {required_range}"
        if step_label:
            message += f" (step {step_label})"

        super().__init__(message)


class StepExecutionError(NgUpgradeError):
    """Raised when a step's executor or one of its required validations fails."""

    def __init__(self, message: str, step_label: str = None):
        self.step_label = step_label

        if step_label:
            message = f"Upgrade step {step_label} failed: {message}"

        super().__init__(message)


class FinalValidationError(NgUpgradeError):
    """Raised when validation after the last step fails."""
    pass


class CheckpointNotFoundError(NgUpgradeError):
    """Raised when a checkpoint id is not present in the index."""

    def __init__(self, checkpoint_id: str):
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint {checkpoint_id} not found")


class CheckpointCorruptError(NgUpgradeError):
    """Raised when a checkpoint fails its integrity validation."""

    def __init__(self, checkpoint_id: str, errors: Optional[List[str]] = None):
        self.checkpoint_id = checkpoint_id
        self.errors = list(errors or [])

        message = f"Checkpoint {checkpoint_id} is corrupted"
        if self.errors:
            message += f": {', '.join(self.errors)}"

        super().__init__(message)


class NoValidCheckpointError(NgUpgradeError):
    """Raised when no checkpoint qualifies as a rollback target."""
    pass


class RollbackError(NgUpgradeError):
    """Raised when restoring a checkpoint could not be completed."""

    def __init__(self, message: str, checkpoint_id: str = None):
        self.checkpoint_id = checkpoint_id

        if checkpoint_id:
            message = f"Rollback to {checkpoint_id} failed: {message}"

        super().__init__(message)


class CommandFailedError(NgUpgradeError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, command: str, returncode: int, output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(f"Command '{command}' exited with status {returncode}")


class CommandTimeoutError(NgUpgradeError, TimeoutError):
    """Raised when an external command exceeds its timeout."""

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command '{command}' timed out after {timeout}s")


class StateTransitionError(NgUpgradeError):
    """Raised when the orchestrator state machine is driven through an invalid transition."""

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid state transition: {from_state} -> {to_state}")

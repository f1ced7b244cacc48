"""
Step executor interfaces and the closed registry of executors per major version.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping

from ..exceptions import NoHandlerError
from ..models import BreakingChange, UpgradePlan, UpgradeStep

if TYPE_CHECKING:
    from .context import ExecutionContext

logger = logging.getLogger(__name__)


class StepExecutor(ABC):
    """Applies the version-specific migration for one upgrade step."""

    @abstractmethod
    def execute(self, project_path: str, step: UpgradeStep, context: 'ExecutionContext') -> None:
        """
        Upgrade the project across one major version boundary.

        Args:
            project_path: Root of the project
            step: Step being executed
            context: Execution context of the run

        Raises:
            Exception: Any failure; the orchestrator reports it as a step failure
        """
        pass

    @abstractmethod
    def validate_prerequisites(self, project_path: str) -> bool:
        """Check that the project is in a state this executor can work on."""
        pass


class ChangeTransformer(ABC):
    """Applies an automatic breaking-change migration to the project."""

    @abstractmethod
    def apply(self, project_path: str, change: BreakingChange) -> None:
        """
        Apply a breaking-change migration.

        Raises:
            Exception: If the migration cannot be applied
        """
        pass


class StepExecutorRegistry:
    """
    Closed mapping from major version to step executor.

    The set of versions is fixed at construction; looking up any other
    version raises NoHandlerError.
    """

    def __init__(self, handlers: Mapping[int, StepExecutor]):
        self._handlers: Dict[int, StepExecutor] = dict(handlers)

    def get_handler(self, version: int) -> StepExecutor:
        """
        Get the executor for a major version.

        Raises:
            NoHandlerError: If no executor is registered for the version
        """
        try:
            return self._handlers[version]
        except KeyError:
            raise NoHandlerError(version)

    def has_handler(self, version: int) -> bool:
        return version in self._handlers

    def supported_versions(self) -> List[int]:
        return sorted(self._handlers)

    def resolve(self, plan: UpgradePlan) -> Dict[int, StepExecutor]:
        """
        Resolve the executor of every step in a plan.

        Raises:
            NoHandlerError: For the first step whose version has no executor
        """
        return {major: self.get_handler(major) for major in plan.majors}

    def validate_handlers(self, versions: Iterable[int]) -> List[int]:
        """Return the versions among the given ones that have no executor."""
        missing = [version for version in versions if version not in self._handlers]
        if missing:
            logger.warning(f"No step executor registered for versions: {missing}")
        return missing

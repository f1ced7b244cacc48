"""
Abstract base class for version capability lookups.
"""

from abc import ABC, abstractmethod
from typing import List

from ..models import BreakingChange, Prerequisite, ValidationSpec


class VersionCapabilityLookup(ABC):
    """Supplies what crossing into a given major version requires."""

    @abstractmethod
    def supported_versions(self) -> List[int]:
        """
        Get the major versions this lookup knows about.

        Returns:
            Sorted list of major versions
        """
        pass

    @abstractmethod
    def get_prerequisites(self, version: int) -> List[Prerequisite]:
        """
        Get prerequisites for upgrading into a major version.

        Args:
            version: Target major version of the step

        Returns:
            Ordered list of Prerequisite objects
        """
        pass

    @abstractmethod
    def get_breaking_changes(self, version: int) -> List[BreakingChange]:
        """
        Get breaking changes introduced by a major version.

        Args:
            version: Target major version of the step

        Returns:
            Ordered list of BreakingChange objects
        """
        pass

    @abstractmethod
    def get_validations(self, version: int, options) -> List[ValidationSpec]:
        """
        Get the full catalogue of validations for a step into a major version.

        The planner narrows this list according to the validation level.

        Args:
            version: Target major version of the step
            options: UpgradeOptions for the run

        Returns:
            Ordered list of ValidationSpec objects
        """
        pass

"""
Upgrade path planning.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from ..capabilities.base import VersionCapabilityLookup
from ..config import PlanningConfig, Strategy, UpgradeOptions, ValidationLevel
from ..exceptions import ExcessiveSpanError, InvalidRangeError, UnsupportedVersionError
from ..models import (
    CURRENT,
    Severity,
    UpgradePlan,
    UpgradeStep,
    ValidationSpec,
    ValidationType,
    VersionIdentifier,
)

logger = logging.getLogger(__name__)

STRATEGY_MULTIPLIERS = {
    Strategy.CONSERVATIVE: 1.5,
    Strategy.BALANCED: 1.0,
    Strategy.PROGRESSIVE: 0.8,
}

COMPREHENSIVE_MULTIPLIER = 1.3

# Majors known to carry architectural changes
COMPLEX_VERSIONS = (13, 15, 17)


class PathPlanner:
    """Builds contiguous major-version upgrade plans."""

    def __init__(self, capabilities: VersionCapabilityLookup, config: Optional[PlanningConfig] = None):
        self.capabilities = capabilities
        self.config = config or PlanningConfig()

    @property
    def supported_versions(self) -> List[int]:
        known = set(self.capabilities.supported_versions())
        return sorted(v for v in self.config.supported_versions if v in known)

    def plan(self, from_version: Union[str, VersionIdentifier], to_version: Union[str, VersionIdentifier],
             options: UpgradeOptions) -> UpgradePlan:
        """
        Calculate the upgrade plan from the current to the target version.

        Args:
            from_version: Version the project is on
            to_version: Version to upgrade to
            options: Options for the run

        Returns:
            UpgradePlan with one step per major version crossed

        Raises:
            InvalidRangeError: If the target major is not above the current one
            UnsupportedVersionError: If a major version on the path is unsupported
            ExcessiveSpanError: If the path crosses more majors than allowed
        """
        current = VersionIdentifier.parse(from_version)
        target = VersionIdentifier.parse(to_version)

        self._validate_versions(current, target)

        steps = []
        previous: Union[VersionIdentifier, str] = CURRENT
        for major in range(current.major + 1, target.major + 1):
            step_target = target if major == target.major else VersionIdentifier(major)
            steps.append(self._create_step(previous, step_target, options))
            previous = step_target

        plan = UpgradePlan(from_version=current, to_version=target, steps=tuple(steps))
        logger.info(f"Calculated upgrade plan {current.full} -> {target.full}: {len(plan)} steps {plan.majors}")
        return plan

    def _validate_versions(self, current: VersionIdentifier, target: VersionIdentifier) -> None:
        if current.major >= target.major:
            raise InvalidRangeError(current.full, target.full)

        supported = self.supported_versions
        if current.major not in supported:
            raise UnsupportedVersionError(str(current.major), supported, role="Current Angular")
        if target.major not in supported:
            raise UnsupportedVersionError(str(target.major), supported, role="Target Angular")

        span = target.major - current.major
        if span > self.config.max_span:
            raise ExcessiveSpanError(current.full, target.full, span, self.config.max_span)

        for major in range(current.major + 1, target.major):
            if major not in supported:
                raise UnsupportedVersionError(str(major), supported)

    def _create_step(self, from_version: Union[VersionIdentifier, str], to_version: VersionIdentifier,
                     options: UpgradeOptions) -> UpgradeStep:
        major = to_version.major
        validations = self._adjust_validations(
            self.capabilities.get_validations(major, options), options.validation_level
        )
        return UpgradeStep(
            from_version=from_version,
            to_version=to_version,
            required=True,
            prerequisites=tuple(self.capabilities.get_prerequisites(major)),
            breaking_changes=tuple(self.capabilities.get_breaking_changes(major)),
            validations=tuple(validations),
        )

    @staticmethod
    def _adjust_validations(specs: List[ValidationSpec], level: ValidationLevel) -> List[ValidationSpec]:
        """Basic keeps only build checks; comprehensive keeps build, test and lint."""
        if level == ValidationLevel.COMPREHENSIVE:
            allowed = (ValidationType.BUILD, ValidationType.TEST, ValidationType.LINT)
        else:
            allowed = (ValidationType.BUILD,)
        return [spec for spec in specs if spec.type in allowed]

    def estimate_duration(self, plan: UpgradePlan, options: UpgradeOptions) -> float:
        """
        Estimate how long the plan takes, in minutes.

        Advisory only.
        """
        per_step = self.config.base_minutes_per_step * STRATEGY_MULTIPLIERS.get(options.strategy, 1.0)
        if options.validation_level == ValidationLevel.COMPREHENSIVE:
            per_step *= COMPREHENSIVE_MULTIPLIER
        return len(plan.steps) * per_step

    def complexity_score(self, plan: UpgradePlan) -> Dict[str, Any]:
        """
        Score how risky the plan is from breaking-change severity and span.

        Returns:
            Dictionary with 'score' (int) and 'factors' (list of strings)
        """
        score = len(plan.steps) * 10
        factors = []

        for step in plan.steps:
            critical = sum(1 for c in step.breaking_changes if c.severity == Severity.CRITICAL)
            high = sum(1 for c in step.breaking_changes if c.severity == Severity.HIGH)
            score += critical * 20 + high * 10

            if critical:
                factors.append(f"Angular {step.to_version.major}: {critical} critical breaking changes")

        span = plan.to_version.major - plan.from_version.major
        if span > 4:
            score += span * 5
            factors.append(f"Large version jump: {span} major versions")

        for step in plan.steps:
            if step.to_version.major in COMPLEX_VERSIONS:
                score += 15
                factors.append(f"Angular {step.to_version.major} includes significant architectural changes")

        return {'score': score, 'factors': factors}

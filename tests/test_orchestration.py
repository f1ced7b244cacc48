"""Tests for the upgrade orchestrator and its state machine."""
import json
import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ng_upgrade.config import (
    CheckpointFrequency,
    Config,
    RollbackPolicy,
    UpgradeOptions,
    ValidationLevel,
)
from ng_upgrade.exceptions import (
    AnalysisError,
    FinalValidationError,
    NoHandlerError,
    PrerequisiteFailedError,
    RollbackError,
    StateTransitionError,
    StepExecutionError,
)
from ng_upgrade.models import ChangeType, ValidationResult, ValidationType
from ng_upgrade.orchestration import (
    ChangeTransformer,
    EventType,
    OrchestratorState,
    ProgressObserver,
    StepExecutor,
    StepExecutorRegistry,
    UpgradeOrchestrator,
    UpgradeStateMachine,
)
from ng_upgrade.rollback.controller import RollbackController
from ng_upgrade.validation.runner import ValidationRunner


class RecordingExecutor(StepExecutor):
    """Bumps framework ranges and leaves a marker file per step; can fail at one major."""

    def __init__(self, fail_at=None):
        self.fail_at = fail_at
        self.executed = []

    def execute(self, project_path, step, context):
        major = step.to_version.major
        manifest_path = os.path.join(project_path, "package.json")
        with open(manifest_path) as f:
            manifest = json.load(f)
        for section in ("dependencies", "devDependencies"):
            for name in manifest.get(section, {}):
                if name.startswith("@angular/"):
                    manifest[section][name] = f"^{major}.0.0"
        with open(manifest_path, "w") as f:
            json.dump(manifest, f, indent=2)
        Path(project_path, "src", f"migrated-{major}.ts").write_text(f"// {major}\n")

        self.executed.append(major)
        if major == self.fail_at:
            raise RuntimeError(f"migration to {major} failed")

    def validate_prerequisites(self, project_path):
        return True


class FinalTestsFailingRunner(ValidationRunner):
    """Validation runner whose final test run fails."""

    def run(self, spec):
        if spec.type == ValidationType.TEST and spec.description.startswith("Final"):
            return ValidationResult(success=False, message="Tests failed", error="3 failing specs")
        return super().run(spec)


class CollectingObserver(ProgressObserver):
    def __init__(self):
        self.events = []

    def on_event(self, event):
        self.events.append(event)

    def types(self, include_state=False):
        return [e.type for e in self.events if include_state or e.type != EventType.STATE_CHANGED]


def make_orchestrator(project, runner, executor, versions=(15, 16, 17), **kwargs):
    registry = StepExecutorRegistry({version: executor for version in versions})
    return UpgradeOrchestrator(str(project), Config(), command_runner=runner, registry=registry, **kwargs)


def project_tree(root, tree_reader):
    tree = tree_reader(root)
    tree.pop("debug.log", None)
    return tree


class TestSuccessfulRun:
    """Test runs that complete."""

    def test_three_steps(self, angular_project, fake_runner):
        executor = RecordingExecutor()
        orchestrator = make_orchestrator(angular_project, fake_runner, executor)

        result = orchestrator.orchestrate(UpgradeOptions(target_version="17"))

        assert result.success, result.error
        assert result.from_version == "14.2.0"
        assert result.to_version == "17.0.0"
        assert [s.label for s in result.completed_steps] == ["current -> 15", "15 -> 16", "16 -> 17"]
        assert executor.executed == [15, 16, 17]
        # initial plus one per major-version step
        assert [c.label for c in result.checkpoints] == ["initial", "step-15", "step-16", "step-17"]
        assert result.rollback_available
        assert result.error is None

    def test_non_required_failure_is_warning(self, angular_project, fake_runner):
        """Test that a failing lint check still yields success with warnings."""
        fake_runner.respond("npm run lint", returncode=1, stdout="12 lint problems")
        orchestrator = make_orchestrator(angular_project, fake_runner, RecordingExecutor())

        result = orchestrator.orchestrate(
            UpgradeOptions(target_version="17", validation_level=ValidationLevel.COMPREHENSIVE)
        )

        assert result.success
        lint_warnings = [w for w in result.warnings if "Linting failed" in w]
        assert len(lint_warnings) == 4  # three steps plus final validation
        assert fake_runner.commands_matching("npm test")

    def test_manual_interventions_reported(self, angular_project, fake_runner):
        observer = CollectingObserver()
        orchestrator = make_orchestrator(angular_project, fake_runner, RecordingExecutor())

        result = orchestrator.orchestrate(UpgradeOptions(target_version="15"), observers=[observer])

        assert any("Convert class-based guards" in note for note in result.manual_interventions)
        manual = [e for e in observer.events if e.type == EventType.MANUAL_INTERVENTION_REQUIRED]
        assert manual and manual[0].data["change_id"] == "ng15-router-guards"

    def test_automatic_changes_use_transformers(self, angular_project, fake_runner):
        transformer = MagicMock(spec=ChangeTransformer)
        orchestrator = make_orchestrator(
            angular_project, fake_runner, RecordingExecutor(), transformers={ChangeType.API: transformer}
        )

        result = orchestrator.orchestrate(UpgradeOptions(target_version="15"))

        assert result.success
        applied = [call.args[1].id for call in transformer.apply.call_args_list]
        assert applied == ["ng15-standalone-stable"]

    @pytest.mark.parametrize("frequency,predicate,expected", [
        (CheckpointFrequency.EVERY_STEP, None, ["initial", "step-15", "step-16", "step-17"]),
        (CheckpointFrequency.CUSTOM, lambda step, index: index == 1, ["initial", "step-16"]),
        (CheckpointFrequency.CUSTOM, None, ["initial"]),
    ])
    def test_checkpoint_frequency(self, angular_project, fake_runner, frequency, predicate, expected):
        orchestrator = make_orchestrator(angular_project, fake_runner, RecordingExecutor())
        options = UpgradeOptions(
            target_version="17", checkpoint_frequency=frequency, custom_checkpoint_predicate=predicate
        )
        result = orchestrator.orchestrate(options)
        assert [c.label for c in result.checkpoints] == expected


class TestFailedRun:
    """Test failure handling and rollback."""

    def test_step_two_of_three_fails_with_automatic_rollback(self, angular_project, fake_runner, tree_reader):
        """Test that the tree returns to the checkpoint taken after step one."""
        executor = RecordingExecutor(fail_at=16)
        orchestrator = make_orchestrator(angular_project, fake_runner, executor)

        result = orchestrator.orchestrate(UpgradeOptions(target_version="17"))

        assert not result.success
        assert [s.label for s in result.completed_steps] == ["current -> 15"]
        assert result.failed_step.label == "15 -> 16"
        assert isinstance(result.error, StepExecutionError)
        assert "migration to 16 failed" in str(result.error)
        assert executor.executed == [15, 16]

        after_step_one = result.checkpoints[-1]
        assert after_step_one.label == "step-15"
        assert result.rollback_result.success
        assert result.rollback_result.checkpoint.id == after_step_one.id
        assert project_tree(angular_project, tree_reader) == tree_reader(Path(after_step_one.storage_location))
        assert (angular_project / "src" / "migrated-15.ts").exists()
        assert not (angular_project / "src" / "migrated-16.ts").exists()
        assert result.rollback_available

    def test_first_step_failure_rolls_back_to_initial(self, angular_project, fake_runner, tree_reader):
        before = project_tree(angular_project, tree_reader)
        orchestrator = make_orchestrator(angular_project, fake_runner, RecordingExecutor(fail_at=15))

        result = orchestrator.orchestrate(UpgradeOptions(target_version="17"))

        assert not result.success
        assert result.completed_steps == ()
        assert project_tree(angular_project, tree_reader) == before

    def test_rollback_reinstalls_dependencies(self, angular_project, fake_runner):
        """Test that automatic rollback reinstalls packages and surfaces install failures."""
        fake_runner.respond("npm ci", returncode=1)
        orchestrator = make_orchestrator(angular_project, fake_runner, RecordingExecutor(fail_at=16))

        result = orchestrator.orchestrate(UpgradeOptions(target_version="17"))

        assert not result.success
        assert result.rollback_result.success
        assert fake_runner.commands_matching("npm ci") == ["npm ci"]
        assert "rollback: Dependency reinstall failed (exit status 1); run 'npm ci' manually" in result.warnings

    def test_required_validation_failure(self, angular_project, fake_runner):
        """Test that a failing build after a step fails that step."""
        orchestrator = make_orchestrator(angular_project, fake_runner, RecordingExecutor())
        fake_runner.respond("npm run build", returncode=1, stdout="error TS2304")
        result = orchestrator.orchestrate(UpgradeOptions(target_version="16"))

        assert not result.success
        assert isinstance(result.error, StepExecutionError)
        assert "required validation failed" in str(result.error)
        assert result.failed_step.label == "current -> 15"

    def test_manual_policy_leaves_project(self, angular_project, fake_runner, tree_reader):
        """Test that without automatic rollback the project stays partially upgraded."""
        orchestrator = make_orchestrator(angular_project, fake_runner, RecordingExecutor(fail_at=16))

        result = orchestrator.orchestrate(
            UpgradeOptions(target_version="17", rollback_policy=RollbackPolicy.MANUAL)
        )

        assert not result.success
        assert result.rollback_result is None
        assert result.rollback_available
        assert (angular_project / "src" / "migrated-16.ts").exists()

        checkpoint = result.checkpoints[-1]
        rollback = orchestrator.rollback_to_checkpoint(checkpoint.id)
        assert rollback.success
        assert rollback.backup_checkpoint is not None
        assert not (angular_project / "src" / "migrated-16.ts").exists()
        assert checkpoint.id in [c.id for c in orchestrator.list_checkpoints()]

    def test_rollback_failure_reported_with_original_error(self, angular_project, fake_runner):
        controller = MagicMock(spec=RollbackController)
        controller.rollback_to.side_effect = RollbackError("disk full", "cp-1")
        orchestrator = make_orchestrator(
            angular_project, fake_runner, RecordingExecutor(fail_at=15), rollback_controller=controller
        )
        observer = CollectingObserver()

        result = orchestrator.orchestrate(UpgradeOptions(target_version="16"), observers=[observer])

        assert not result.success
        assert isinstance(result.error, StepExecutionError)
        assert "disk full" in result.rollback_error
        assert result.rollback_result is None
        assert EventType.ROLLBACK_FAILED in observer.types()


class TestAbortBeforeMutation:
    """Test failures detected before anything is changed."""

    def test_critical_prerequisite(self, angular_project, fake_runner, tree_reader):
        """Test that an unmet critical prerequisite aborts with no mutation."""
        fake_runner.respond("node --version", stdout="v16.20.0")
        before = project_tree(angular_project, tree_reader)
        executor = RecordingExecutor()
        orchestrator = make_orchestrator(angular_project, fake_runner, executor)

        result = orchestrator.orchestrate(UpgradeOptions(target_version="17"))

        assert not result.success
        assert isinstance(result.error, PrerequisiteFailedError)
        assert result.error.name == "node"
        assert result.error.step_label == "16 -> 17"
        assert executor.executed == []
        assert result.checkpoints == ()
        assert not result.rollback_available
        assert orchestrator.list_checkpoints() == []
        assert project_tree(angular_project, tree_reader) == before

    def test_missing_handler(self, angular_project, fake_runner):
        executor = RecordingExecutor()
        orchestrator = make_orchestrator(angular_project, fake_runner, executor, versions=(15, 17))

        result = orchestrator.orchestrate(UpgradeOptions(target_version="17"))

        assert isinstance(result.error, NoHandlerError)
        assert result.error.version == 16
        assert executor.executed == []
        assert result.checkpoints == ()

    def test_invalid_range(self, angular_project, fake_runner):
        orchestrator = make_orchestrator(angular_project, fake_runner, RecordingExecutor())
        result = orchestrator.orchestrate(UpgradeOptions(target_version="13"))
        assert not result.success
        assert type(result.error).__name__ == "InvalidRangeError"

    def test_analysis_failure(self, tmp_path, fake_runner):
        orchestrator = make_orchestrator(tmp_path, fake_runner, RecordingExecutor())
        result = orchestrator.orchestrate(UpgradeOptions(target_version="17"))
        assert isinstance(result.error, AnalysisError)
        assert result.from_version == "unknown"


class TestFinalValidationPolicy:
    """Test how final-validation warnings are treated."""

    def test_warnings_tolerated_by_default(self, angular_project, fake_runner):
        fake_runner.respond("npm run lint", returncode=1)
        orchestrator = make_orchestrator(angular_project, fake_runner, RecordingExecutor())
        result = orchestrator.orchestrate(
            UpgradeOptions(target_version="16", validation_level=ValidationLevel.COMPREHENSIVE)
        )
        assert result.success
        assert any(w.startswith("final validation:") for w in result.warnings)

    def test_warnings_fail_run_and_roll_back(self, angular_project, fake_runner, tree_reader):
        """Test that fatal final warnings roll the project back to its initial state."""
        before = project_tree(angular_project, tree_reader)
        fake_runner.respond("npm run lint", returncode=1)
        orchestrator = make_orchestrator(angular_project, fake_runner, RecordingExecutor())

        result = orchestrator.orchestrate(UpgradeOptions(
            target_version="16",
            validation_level=ValidationLevel.COMPREHENSIVE,
            fail_on_final_validation_warnings=True,
        ))

        assert not result.success
        assert isinstance(result.error, FinalValidationError)
        assert result.failed_step is None
        assert len(result.completed_steps) == 2
        assert result.rollback_result.checkpoint.label == "initial"
        assert project_tree(angular_project, tree_reader) == before

    def test_required_final_check_fails_run(self, angular_project, fake_runner):
        """Test that a failing final test run fails the whole run."""
        runner = FinalTestsFailingRunner(str(angular_project), fake_runner)
        orchestrator = make_orchestrator(
            angular_project, fake_runner, RecordingExecutor(), validation_runner=runner
        )

        result = orchestrator.orchestrate(
            UpgradeOptions(target_version="16", validation_level=ValidationLevel.COMPREHENSIVE)
        )

        assert not result.success
        assert isinstance(result.error, FinalValidationError)
        assert "3 failing specs" in str(result.error)
        assert len(result.completed_steps) == 2


class TestObservers:
    """Test lifecycle notifications."""

    def test_event_sequence(self, angular_project, fake_runner):
        observer = CollectingObserver()
        orchestrator = make_orchestrator(angular_project, fake_runner, RecordingExecutor())

        orchestrator.orchestrate(UpgradeOptions(target_version="17"), observers=[observer])

        types = observer.types()
        assert types[:3] == [EventType.ANALYSIS_COMPLETE, EventType.PLAN_CALCULATED, EventType.CHECKPOINT_CREATED]
        assert types.count(EventType.STEP_STARTED) == 3
        assert types.count(EventType.STEP_COMPLETED) == 3
        assert types[-1] == EventType.RUN_COMPLETED

        states = [e.data["state"] for e in observer.events if e.type == EventType.STATE_CHANGED]
        assert states[0] == "analyzing"
        assert states[-1] == "succeeded"

        plan_event = [e for e in observer.events if e.type == EventType.PLAN_CALCULATED][0]
        assert plan_event.data["majors"] == [15, 16, 17]
        assert plan_event.data["estimated_minutes"] == pytest.approx(45.0)

    def test_outcome_independent_of_observers(self, make_project, fake_runner, tree_reader):
        """Test that attaching observers, even failing ones, does not change the outcome."""

        class ExplodingObserver(ProgressObserver):
            def on_event(self, event):
                raise RuntimeError("observer bug")

        outcomes = []
        for index, observers in enumerate([None, [ExplodingObserver(), CollectingObserver()]]):
            root = make_project(f"project-{index}")
            orchestrator = make_orchestrator(root, fake_runner, RecordingExecutor(fail_at=16))
            result = orchestrator.orchestrate(UpgradeOptions(target_version="17"), observers=observers)
            outcomes.append((
                result.success,
                [s.label for s in result.completed_steps],
                type(result.error),
                [c.label for c in result.checkpoints],
                project_tree(root, tree_reader) == tree_reader(Path(result.checkpoints[-1].storage_location)),
            ))

        assert outcomes[0] == outcomes[1]

    def test_subscribed_observer_receives_rollback_events(self, angular_project, fake_runner):
        observer = CollectingObserver()
        orchestrator = make_orchestrator(angular_project, fake_runner, RecordingExecutor(fail_at=15))
        orchestrator.subscribe(observer)

        orchestrator.orchestrate(UpgradeOptions(target_version="16"))

        types = observer.types()
        assert EventType.STEP_FAILED in types
        assert types.index(EventType.ROLLBACK_STARTED) < types.index(EventType.ROLLBACK_COMPLETED)
        assert types[-1] == EventType.RUN_FAILED


class TestStateMachine:
    """Test the pure transition table."""

    def test_happy_path(self):
        machine = UpgradeStateMachine()
        for state in (OrchestratorState.ANALYZING, OrchestratorState.PLANNING,
                      OrchestratorState.VALIDATING_PREREQUISITES):
            machine.transition(state)
        machine.transition(OrchestratorState.EXECUTING_STEPS, step_index=0)
        machine.transition(OrchestratorState.EXECUTING_STEPS, step_index=1)
        assert machine.step_index == 1
        machine.transition(OrchestratorState.FINAL_VALIDATING)
        machine.transition(OrchestratorState.SUCCEEDED)
        assert machine.is_terminal
        assert machine.step_index is None

    def test_rolling_back_only_to_failed(self):
        machine = UpgradeStateMachine()
        machine.transition(OrchestratorState.ANALYZING)
        machine.transition(OrchestratorState.PLANNING)
        machine.transition(OrchestratorState.VALIDATING_PREREQUISITES)
        machine.transition(OrchestratorState.EXECUTING_STEPS, step_index=0)
        machine.transition(OrchestratorState.ROLLING_BACK)
        assert not machine.can_transition(OrchestratorState.SUCCEEDED)
        machine.transition(OrchestratorState.FAILED)
        assert machine.is_terminal

    def test_invalid_transition(self):
        machine = UpgradeStateMachine()
        with pytest.raises(StateTransitionError):
            machine.transition(OrchestratorState.EXECUTING_STEPS)
        with pytest.raises(StateTransitionError):
            machine.transition(OrchestratorState.ROLLING_BACK)

"""
Upgrade orchestrator.

Drives one upgrade run through analysis, planning, prerequisite validation,
step execution and final validation, rolling back to the most recent
checkpoint on failure when the rollback policy asks for it.
"""

import logging
import time
from typing import Dict, List, Optional, Sequence

from ..analysis.base import ProjectAnalyzer
from ..analysis.project_analyzer import AngularProjectAnalyzer
from ..capabilities.angular import AngularCapabilityLookup
from ..capabilities.base import VersionCapabilityLookup
from ..commands import CommandRunner, SubprocessCommandRunner
from ..config import (
    CheckpointFrequency,
    Config,
    RollbackPolicy,
    UpgradeOptions,
    ValidationLevel,
    get_default_config_path,
    load_config,
)
from ..exceptions import (
    FinalValidationError,
    NgUpgradeError,
    PrerequisiteFailedError,
    StepExecutionError,
)
from ..logging_config import setup_logging
from ..models import (
    ChangeType,
    Checkpoint,
    MigrationType,
    RollbackResult,
    UpgradeResult,
    UpgradeStep,
    ValidationSpec,
    ValidationType,
)
from ..planning.path_planner import PathPlanner
from ..rollback.controller import RollbackController
from ..snapshots.store import SnapshotStore
from ..validation.runner import ValidationRunner
from .context import ExecutionContext
from .events import EventBus, EventType, LoggingProgressObserver, ProgressObserver
from .executors import create_default_registry
from .registry import ChangeTransformer, StepExecutor, StepExecutorRegistry
from .state import OrchestratorState, UpgradeStateMachine

logger = logging.getLogger(__name__)


class UpgradeOrchestrator:
    """Runs multi-step upgrades of one project."""

    def __init__(self, project_path: str, config: Optional[Config] = None,
                 command_runner: Optional[CommandRunner] = None,
                 analyzer: Optional[ProjectAnalyzer] = None,
                 capabilities: Optional[VersionCapabilityLookup] = None,
                 store: Optional[SnapshotStore] = None,
                 validation_runner: Optional[ValidationRunner] = None,
                 rollback_controller: Optional[RollbackController] = None,
                 registry: Optional[StepExecutorRegistry] = None,
                 transformers: Optional[Dict[ChangeType, ChangeTransformer]] = None):
        """
        Initialize the orchestrator. Every collaborator not passed in gets its default.

        Args:
            project_path: Root of the project to upgrade
            config: Configuration; defaults apply when omitted
            command_runner: Runner for build, test and package-manager commands
            analyzer: Project analyzer
            capabilities: Version capability lookup used by the planner
            store: Snapshot store for checkpoints
            validation_runner: Runner for validation checks
            rollback_controller: Controller used for automatic and manual rollback
            registry: Step executors per major version
            transformers: Automatic breaking-change migrations by change type
        """
        self.project_path = project_path
        self.config = config or Config()
        self.command_runner = command_runner or SubprocessCommandRunner()

        self.analyzer = analyzer or AngularProjectAnalyzer(self.config.validation.core_package)
        self.capabilities = capabilities or AngularCapabilityLookup(self.config.validation)
        self.planner = PathPlanner(self.capabilities, self.config.planning)
        self.store = store or SnapshotStore(
            project_path, self.command_runner, self.config.checkpoints, self.config.validation
        )
        self.validation_runner = validation_runner or ValidationRunner(
            project_path, self.command_runner, self.config.validation
        )
        self.rollback_controller = rollback_controller or RollbackController(self.store, self.validation_runner)
        self.registry = registry or create_default_registry(
            self.command_runner, self.config.executor, self.planner.supported_versions
        )
        self.transformers = dict(transformers or {})

        self._observers: List[ProgressObserver] = []

    @classmethod
    def from_config(cls, project_path: str, config_path: Optional[str] = None,
                    configure_logging: bool = True, **collaborators) -> 'UpgradeOrchestrator':
        """
        Build an orchestrator from a YAML configuration file.

        Args:
            project_path: Root of the project to upgrade
            config_path: Configuration file; the default locations are searched when omitted
            configure_logging: Set up the package logger from the logging section
            **collaborators: Passed through to the constructor

        Raises:
            ConfigurationError: If the file or its logging section is invalid
        """
        config = load_config(config_path or get_default_config_path())
        if configure_logging:
            setup_logging(config.logging.level, config.logging.log_file, config.logging.verbose)
        return cls(project_path, config=config, **collaborators)

    def subscribe(self, observer: ProgressObserver) -> None:
        """Attach an observer to every subsequent run."""
        if observer not in self._observers:
            self._observers.append(observer)

    def orchestrate(self, options: UpgradeOptions,
                    observers: Optional[Sequence[ProgressObserver]] = None) -> UpgradeResult:
        """
        Run the upgrade described by the options.

        Never raises: every failure is reported in the returned UpgradeResult.

        Args:
            options: Immutable options of the run
            observers: Extra observers for this run only; a logging observer
                is used when no observer is attached at all

        Returns:
            UpgradeResult of the run
        """
        start_time = time.time()
        run_observers = self._observers + list(observers or [])
        events = EventBus(run_observers or [LoggingProgressObserver()])
        context = ExecutionContext(project_path=self.project_path, options=options, events=events)
        machine = UpgradeStateMachine()
        from_version = "unknown"
        to_version = str(options.target_version)

        # Nothing below touches the project until the initial checkpoint exists
        try:
            self._transition(machine, events, OrchestratorState.ANALYZING)
            analysis = self.analyzer.analyze(self.project_path)
            from_version = analysis.current_version.full
            events.emit(
                EventType.ANALYSIS_COMPLETE,
                f"Project is on Angular {from_version} ({analysis.project_type}, {analysis.build_system})",
                current_version=from_version,
            )

            self._transition(machine, events, OrchestratorState.PLANNING)
            plan = self.planner.plan(analysis.current_version, options.target_version, options)
            to_version = plan.to_version.full
            handlers = self.registry.resolve(plan)
            context.plan = plan
            events.emit(
                EventType.PLAN_CALCULATED,
                f"Upgrade path {from_version} -> {to_version}: {len(plan)} steps",
                majors=plan.majors,
                estimated_minutes=self.planner.estimate_duration(plan, options),
                complexity=self.planner.complexity_score(plan),
            )

            self._transition(machine, events, OrchestratorState.VALIDATING_PREREQUISITES)
            self._validate_all_prerequisites(context, handlers)

            initial = self._create_checkpoint(
                context, 'initial', f"Before upgrade from {from_version} to {to_version}"
            )
        except Exception as e:
            logger.error(f"Upgrade aborted before any change to the project: {e}")
            self._transition(machine, events, OrchestratorState.FAILED)
            events.emit(EventType.RUN_FAILED, f"Upgrade failed: {e}", error=str(e))
            return self._result(context, False, from_version, to_version, start_time, error=e)

        logger.debug(f"Initial checkpoint {initial.id} created")

        for index, step in enumerate(plan.steps):
            self._transition(machine, events, OrchestratorState.EXECUTING_STEPS, step_index=index)
            events.emit(EventType.STEP_STARTED, f"Upgrading to Angular {step.to_version.major}",
                        step_label=step.label, index=index, total=len(plan))
            try:
                self._execute_step(context, step, handlers[step.to_version.major])
            except Exception as e:
                error = e if isinstance(e, NgUpgradeError) else StepExecutionError(str(e), step.label)
                events.emit(EventType.STEP_FAILED, str(error), step_label=step.label)
                return self._fail(machine, context, error, from_version, to_version, start_time, failed_step=step)

            context.completed_steps.append(step)
            if self._should_checkpoint(step, index, options):
                try:
                    self._create_checkpoint(
                        context, f"step-{step.to_version.major}",
                        f"After upgrade to Angular {step.to_version.major}"
                    )
                except Exception as e:
                    error = StepExecutionError(f"checkpoint creation failed: {e}", step.label)
                    return self._fail(machine, context, error, from_version, to_version, start_time,
                                      failed_step=step)

            events.emit(EventType.STEP_COMPLETED, f"Upgraded to Angular {step.to_version.major}",
                        step_label=step.label)

        self._transition(machine, events, OrchestratorState.FINAL_VALIDATING)
        try:
            self._final_validation(context)
        except FinalValidationError as e:
            # The latest checkpoint holds the state that just failed validation
            return self._fail(machine, context, e, from_version, to_version, start_time,
                              rollback_target=context.checkpoints[0])

        self._transition(machine, events, OrchestratorState.SUCCEEDED)
        events.emit(EventType.RUN_COMPLETED, f"Upgrade {from_version} -> {to_version} completed",
                    warnings=len(context.warnings))
        return self._result(context, True, from_version, to_version, start_time)

    def list_checkpoints(self) -> List[Checkpoint]:
        """List the project's checkpoints in creation order."""
        return self.store.list()

    def rollback_to_checkpoint(self, checkpoint_id: str, preserve_files: Sequence[str] = (),
                               backup_before_rollback: bool = True,
                               validate_after: bool = False) -> RollbackResult:
        """Manually roll the project back to a checkpoint."""
        return self.rollback_controller.rollback_to(
            checkpoint_id,
            preserve_files=preserve_files,
            backup_before_rollback=backup_before_rollback,
            validate_after=validate_after,
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _validate_all_prerequisites(self, context: ExecutionContext, handlers: Dict[int, StepExecutor]) -> None:
        """Check every critical prerequisite of every step before anything is changed."""
        for step in context.plan.steps:
            for prerequisite in step.prerequisites:
                if not prerequisite.critical:
                    continue
                if not self.validation_runner.validate_prerequisite(prerequisite):
                    raise PrerequisiteFailedError(
                        prerequisite.name, prerequisite.required_version_range, step.label
                    )

        for major, handler in handlers.items():
            if not handler.validate_prerequisites(self.project_path):
                raise PrerequisiteFailedError(f"step executor for Angular {major}", step_label=str(major))

    def _execute_step(self, context: ExecutionContext, step: UpgradeStep, handler: StepExecutor) -> None:
        for prerequisite in step.prerequisites:
            if self.validation_runner.validate_prerequisite(prerequisite):
                continue
            if prerequisite.critical:
                raise PrerequisiteFailedError(prerequisite.name, prerequisite.required_version_range, step.label)
            required = f" {prerequisite.required_version_range}" if prerequisite.required_version_range else ""
            context.warnings.append(f"{step.label}: prerequisite {prerequisite.name}{required} not met")

        if not handler.validate_prerequisites(self.project_path):
            raise StepExecutionError("step executor prerequisites not met", step.label)

        try:
            handler.execute(self.project_path, step, context)
        except NgUpgradeError as e:
            raise StepExecutionError(str(e), step.label) from e

        self._apply_breaking_changes(context, step)

        for spec in step.validations:
            result = self.validation_runner.run(spec)
            if result.success:
                continue
            detail = f": {result.error}" if result.error else ""
            if spec.required:
                raise StepExecutionError(f"required validation failed: {result.message}{detail}", step.label)
            context.warnings.append(f"{step.label}: {result.message}{detail}")

    def _apply_breaking_changes(self, context: ExecutionContext, step: UpgradeStep) -> None:
        for change in step.breaking_changes:
            if change.migration_type == MigrationType.MANUAL:
                note = f"Angular {change.version}: {change.description}"
                if change.instructions:
                    note += f" - {change.instructions}"
                context.manual_interventions.append(note)
                context.events.emit(EventType.MANUAL_INTERVENTION_REQUIRED, note,
                                    step_label=step.label, change_id=change.id)
                continue

            transformer = self.transformers.get(change.type)
            if transformer is None:
                continue
            try:
                transformer.apply(self.project_path, change)
            except Exception as e:
                raise StepExecutionError(f"migration {change.id} failed: {e}", step.label) from e
            logger.debug(f"Applied migration {change.id}")

    def _final_validation(self, context: ExecutionContext) -> None:
        """
        Validate the upgraded project.

        Raises:
            FinalValidationError: If a required check fails, or if any check
                reports a failure and the options treat warnings as fatal
        """
        options = context.options
        specs = [
            ValidationSpec(ValidationType.BUILD, 'Final build validation', required=True),
            ValidationSpec(ValidationType.COMPATIBILITY, 'Final compatibility validation', required=False),
        ]
        if options.validation_level == ValidationLevel.COMPREHENSIVE:
            specs.append(ValidationSpec(ValidationType.TEST, 'Final test validation', required=True))
            specs.append(ValidationSpec(ValidationType.LINT, 'Final lint validation', required=False))

        final_warnings = []
        for spec in specs:
            result = self.validation_runner.run(spec)
            if result.success:
                continue
            detail = f": {result.error}" if result.error else ""
            if spec.required:
                raise FinalValidationError(f"{spec.description} failed{detail}")
            final_warnings.append(f"final validation: {result.message}{detail}")

        context.warnings.extend(final_warnings)
        if final_warnings and options.fail_on_final_validation_warnings:
            raise FinalValidationError(
                f"Final validation reported {len(final_warnings)} warnings: {'; '.join(final_warnings)}"
            )

    def _fail(self, machine: UpgradeStateMachine, context: ExecutionContext, error: Exception,
              from_version: str, to_version: str, start_time: float,
              failed_step: Optional[UpgradeStep] = None,
              rollback_target: Optional[Checkpoint] = None) -> UpgradeResult:
        events = context.events
        rollback_result = None
        rollback_error = None
        checkpoint = rollback_target or context.current_checkpoint

        if context.options.rollback_policy == RollbackPolicy.AUTOMATIC and checkpoint:
            self._transition(machine, events, OrchestratorState.ROLLING_BACK)
            events.emit(EventType.ROLLBACK_STARTED, f"Rolling back to checkpoint {checkpoint.id}",
                        checkpoint_id=checkpoint.id)
            try:
                rollback_result = self.rollback_controller.rollback_to(checkpoint.id)
                context.warnings.extend(f"rollback: {warning}" for warning in rollback_result.warnings)
                events.emit(EventType.ROLLBACK_COMPLETED, f"Rolled back to checkpoint {checkpoint.id}",
                            checkpoint_id=checkpoint.id)
            except Exception as e:
                rollback_error = str(e)
                logger.error(f"Automatic rollback to {checkpoint.id} failed: {e}")
                events.emit(EventType.ROLLBACK_FAILED, f"Rollback to {checkpoint.id} failed: {e}",
                            checkpoint_id=checkpoint.id)

        self._transition(machine, events, OrchestratorState.FAILED)
        events.emit(EventType.RUN_FAILED, f"Upgrade failed: {error}", error=str(error))
        return self._result(context, False, from_version, to_version, start_time, error=error,
                            failed_step=failed_step, rollback_result=rollback_result,
                            rollback_error=rollback_error)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _create_checkpoint(self, context: ExecutionContext, label: str, description: str) -> Checkpoint:
        checkpoint = self.store.create_checkpoint(label, description)
        context.checkpoints.append(checkpoint)
        context.current_checkpoint = checkpoint
        context.events.emit(EventType.CHECKPOINT_CREATED, f"Checkpoint {checkpoint.id} created",
                            checkpoint_id=checkpoint.id)
        return checkpoint

    @staticmethod
    def _should_checkpoint(step: UpgradeStep, index: int, options: UpgradeOptions) -> bool:
        if options.checkpoint_frequency == CheckpointFrequency.EVERY_STEP:
            return True
        if options.checkpoint_frequency == CheckpointFrequency.MAJOR_VERSIONS:
            return step.required
        if options.custom_checkpoint_predicate is not None:
            return bool(options.custom_checkpoint_predicate(step, index))
        return False

    @staticmethod
    def _transition(machine: UpgradeStateMachine, events: EventBus, state: OrchestratorState,
                    step_index: Optional[int] = None) -> None:
        previous = machine.transition(state, step_index)
        events.emit(EventType.STATE_CHANGED, f"{previous.value} -> {state.value}",
                    previous=previous.value, state=state.value, step_index=step_index)

    @staticmethod
    def _result(context: ExecutionContext, success: bool, from_version: str, to_version: str,
                start_time: float, error: Optional[Exception] = None,
                failed_step: Optional[UpgradeStep] = None,
                rollback_result: Optional[RollbackResult] = None,
                rollback_error: Optional[str] = None) -> UpgradeResult:
        return UpgradeResult(
            success=success,
            from_version=from_version,
            to_version=to_version,
            completed_steps=tuple(context.completed_steps),
            checkpoints=tuple(context.checkpoints),
            duration=round(time.time() - start_time, 2),
            rollback_available=bool(context.checkpoints),
            warnings=tuple(context.warnings),
            manual_interventions=tuple(context.manual_interventions),
            error=error,
            failed_step=failed_step,
            rollback_result=rollback_result,
            rollback_error=rollback_error,
        )

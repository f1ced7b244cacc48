"""
Orchestration Module

State machine, lifecycle events, step executors and the orchestrator that
drives an upgrade run.
"""

from .context import ExecutionContext
from .events import EventBus, EventType, LifecycleEvent, LoggingProgressObserver, ProgressObserver
from .executors import NgUpdateStepExecutor, create_default_registry
from .orchestrator import UpgradeOrchestrator
from .registry import ChangeTransformer, StepExecutor, StepExecutorRegistry
from .state import OrchestratorState, UpgradeStateMachine

__all__ = [
    'ExecutionContext',
    'EventBus',
    'EventType',
    'LifecycleEvent',
    'LoggingProgressObserver',
    'ProgressObserver',
    'NgUpdateStepExecutor',
    'create_default_registry',
    'UpgradeOrchestrator',
    'ChangeTransformer',
    'StepExecutor',
    'StepExecutorRegistry',
    'OrchestratorState',
    'UpgradeStateMachine',
]

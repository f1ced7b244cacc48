"""
Lifecycle events emitted by the upgrade orchestrator.

Events are immutable notifications. Observers receive them after the fact and
cannot influence the run: an observer that raises is logged and ignored.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Kinds of lifecycle notifications."""
    STATE_CHANGED = "state-changed"
    ANALYSIS_COMPLETE = "analysis-complete"
    PLAN_CALCULATED = "plan-calculated"
    CHECKPOINT_CREATED = "checkpoint-created"
    STEP_STARTED = "step-started"
    STEP_COMPLETED = "step-completed"
    STEP_FAILED = "step-failed"
    MANUAL_INTERVENTION_REQUIRED = "manual-intervention-required"
    ROLLBACK_STARTED = "rollback-started"
    ROLLBACK_COMPLETED = "rollback-completed"
    ROLLBACK_FAILED = "rollback-failed"
    RUN_COMPLETED = "run-completed"
    RUN_FAILED = "run-failed"


@dataclass(frozen=True)
class LifecycleEvent:
    """A single lifecycle notification."""
    type: EventType
    message: str
    step_label: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ProgressObserver(ABC):
    """Subscriber interface for lifecycle notifications."""

    @abstractmethod
    def on_event(self, event: LifecycleEvent) -> None:
        """
        Receive a lifecycle event.

        Args:
            event: The event that occurred
        """
        pass


class LoggingProgressObserver(ProgressObserver):
    """Logs every lifecycle event through the package logger."""

    LEVELS = {
        EventType.STATE_CHANGED: logging.DEBUG,
        EventType.STEP_FAILED: logging.ERROR,
        EventType.ROLLBACK_FAILED: logging.ERROR,
        EventType.RUN_FAILED: logging.ERROR,
        EventType.MANUAL_INTERVENTION_REQUIRED: logging.WARNING,
    }

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logging.getLogger('ng_upgrade.progress')

    def on_event(self, event: LifecycleEvent) -> None:
        level = self.LEVELS.get(event.type, logging.INFO)
        prefix = f"[{event.step_label}] " if event.step_label else ""
        self.log.log(level, f"{prefix}{event.message}")


class EventBus:
    """Delivers events to an ordered list of observers."""

    def __init__(self, observers: Optional[List[ProgressObserver]] = None):
        self._observers: List[ProgressObserver] = list(observers or [])
        self.history: List[LifecycleEvent] = []

    def subscribe(self, observer: ProgressObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: ProgressObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def emit(self, event_type: EventType, message: str, step_label: Optional[str] = None,
             **data) -> LifecycleEvent:
        """Build an event, record it and deliver it to every observer."""
        event = LifecycleEvent(type=event_type, message=message, step_label=step_label, data=data)
        self.history.append(event)

        for observer in list(self._observers):
            try:
                observer.on_event(event)
            except Exception as e:
                logger.warning(f"Progress observer {type(observer).__name__} failed on {event_type.value}: {e}")
        return event

"""
Per-run execution context.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from ..config import UpgradeOptions
from ..models import Checkpoint, UpgradePlan, UpgradeStep
from .events import EventBus


@dataclass
class ExecutionContext:
    """
    Runtime state of one orchestration run.

    The options stay immutable; everything acquired or accumulated while the
    run progresses lives here.
    """
    project_path: str
    options: UpgradeOptions
    events: EventBus
    plan: Optional[UpgradePlan] = None
    current_checkpoint: Optional[Checkpoint] = None
    checkpoints: List[Checkpoint] = field(default_factory=list)
    completed_steps: List[UpgradeStep] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    manual_interventions: List[str] = field(default_factory=list)

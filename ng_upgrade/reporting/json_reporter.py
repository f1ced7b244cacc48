"""
JSON report generator for upgrade results.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .. import __version__
from ..models import Checkpoint, UpgradeResult, UpgradeStep
from .base import ReportGenerator


class JSONReporter(ReportGenerator):
    """Structured JSON rendering of an UpgradeResult."""

    def __init__(self, include_metadata: bool = True, pretty_print: bool = True):
        """
        Initialize JSON reporter.

        Args:
            include_metadata: Whether to include metadata like timestamps
            pretty_print: Whether to format JSON with indentation
        """
        self.include_metadata = include_metadata
        self.pretty_print = pretty_print

    def generate_report(self, result: UpgradeResult, output_path: Optional[str] = None) -> str:
        report_data = self.get_structured_data(result)

        if self.pretty_print:
            json_content = json.dumps(report_data, indent=2, ensure_ascii=False)
        else:
            json_content = json.dumps(report_data, ensure_ascii=False)

        if output_path:
            with open(output_path, 'w', encoding='utf-8') as f:
                f.write(json_content)

        return json_content

    def get_format_name(self) -> str:
        return "json"

    def get_structured_data(self, result: UpgradeResult) -> Dict[str, Any]:
        """Build the report as a dictionary."""
        report = {
            "summary": self._build_summary(result),
            "completed_steps": [self._step_to_dict(step) for step in result.completed_steps],
            "checkpoints": self._build_checkpoints(result.checkpoints),
            "warnings": list(result.warnings),
            "manual_interventions": list(result.manual_interventions),
        }

        if not result.success:
            report["failure"] = self._build_failure(result)

        if self.include_metadata:
            report["metadata"] = {
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "tool_version": __version__,
            }

        return report

    def _build_summary(self, result: UpgradeResult) -> Dict[str, Any]:
        return {
            "success": result.success,
            "from_version": result.from_version,
            "to_version": result.to_version,
            "steps_completed": len(result.completed_steps),
            "checkpoints_created": len(result.checkpoints),
            "rollback_available": result.rollback_available,
            "duration_seconds": round(result.duration, 3),
            "warning_count": len(result.warnings),
        }

    def _build_failure(self, result: UpgradeResult) -> Dict[str, Any]:
        failure = {
            "error": str(result.error) if result.error else None,
            "error_type": type(result.error).__name__ if result.error else None,
            "failed_step": result.failed_step.label if result.failed_step else None,
            "rolled_back": bool(result.rollback_result and result.rollback_result.success),
            "rollback_error": result.rollback_error,
        }
        if result.rollback_result and result.rollback_result.checkpoint:
            failure["rollback_checkpoint"] = result.rollback_result.checkpoint.id
        return failure

    @staticmethod
    def _step_to_dict(step: UpgradeStep) -> Dict[str, Any]:
        return {
            "label": step.label,
            "to_version": step.to_version.full,
            "breaking_changes": [change.id for change in step.breaking_changes],
            "validations": [spec.type.value for spec in step.validations],
        }

    @staticmethod
    def _build_checkpoints(checkpoints: Sequence[Checkpoint]) -> List[Dict[str, Any]]:
        items = []
        for checkpoint in checkpoints:
            items.append({
                "id": checkpoint.id,
                "label": checkpoint.label,
                "version": checkpoint.version_label,
                "timestamp": checkpoint.timestamp.isoformat(),
                "build_status": checkpoint.metadata.build_status.value,
            })
        return items

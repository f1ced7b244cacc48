"""
Rollback controller.

Wraps the snapshot store's restore with the policies used during and after
an upgrade run: preserving selected files, backing up the current state
first, validating afterwards, and searching for the newest usable checkpoint.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..exceptions import CheckpointCorruptError, NoValidCheckpointError, RollbackError
from ..models import BuildStatus, Checkpoint, RollbackResult
from ..snapshots.store import SnapshotStore
from ..validation.runner import ValidationRunner

logger = logging.getLogger(__name__)

# Checkpoints above this size get a feasibility warning
LARGE_CHECKPOINT_BYTES = 100 * 1024 * 1024


class RollbackController:
    """Rolls the project back to checkpoints held by a SnapshotStore."""

    def __init__(self, store: SnapshotStore, validation_runner: Optional[ValidationRunner] = None):
        self.store = store
        self.validation_runner = validation_runner

    def rollback_to(self, checkpoint_id: str, preserve_files: Sequence[str] = (),
                    backup_before_rollback: bool = False, validate_after: bool = False) -> RollbackResult:
        """
        Roll the project back to a checkpoint.

        Args:
            checkpoint_id: Checkpoint to restore
            preserve_files: Project-relative paths whose current contents survive the rollback
            backup_before_rollback: Capture a "pre-rollback" checkpoint first
            validate_after: Run a validation pass after restoring; failures become warnings

        Returns:
            RollbackResult describing the rollback

        Raises:
            CheckpointNotFoundError: If the checkpoint id is unknown
            CheckpointCorruptError: If the checkpoint fails integrity validation
            RollbackError: If a preserved path is outside the project or the restore fails
        """
        checkpoint = self.store.get(checkpoint_id)
        validation = self.store.validate(checkpoint_id)
        if not validation['valid']:
            raise CheckpointCorruptError(checkpoint_id, validation['errors'])

        logger.info(f"Rolling back to checkpoint {checkpoint_id} ({checkpoint.description})")

        backup = None
        if backup_before_rollback:
            backup = self.store.create_checkpoint(
                'pre-rollback', f"Backup before rollback to {checkpoint_id}"
            )

        preserved = self._read_preserved(preserve_files)

        try:
            self.store.restore(checkpoint_id, reinstall=False)
        except RollbackError:
            raise
        except OSError as e:
            raise RollbackError(f"restore failed: {e}", checkpoint_id) from e

        for relative_path, content in preserved.items():
            target = self.store.project_path / relative_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)

        # Preserved manifests must be in place before installing
        warnings = self.store.reinstall_dependencies()
        if validate_after:
            warnings.extend(self._post_rollback_warnings())

        logger.info(f"Rollback to {checkpoint_id} completed ({len(warnings)} warnings)")
        return RollbackResult(
            success=True,
            checkpoint=checkpoint,
            preserved_files=sorted(preserved),
            warnings=warnings,
            backup_checkpoint=backup,
        )

    def rollback_to_last_good(self) -> RollbackResult:
        """
        Roll back to the newest checkpoint with a successful build that passes validation.

        Raises:
            NoValidCheckpointError: If no checkpoint qualifies
        """
        for checkpoint in self._newest_first():
            if checkpoint.metadata.build_status != BuildStatus.SUCCESS:
                continue
            if not self.store.validate(checkpoint.id)['valid']:
                logger.debug(f"Skipping invalid checkpoint {checkpoint.id}")
                continue
            return self.rollback_to(checkpoint.id)

        raise NoValidCheckpointError("No checkpoint with a successful build is available")

    def progressive_rollback(self, target_id: Optional[str] = None) -> List[RollbackResult]:
        """
        Roll back one checkpoint at a time, newest first.

        Stops at the first checkpoint whose post-rollback validation reports no
        warnings. When target_id is given the walk never goes past it, even if
        the target itself turns out to be invalid and is skipped.

        Args:
            target_id: Oldest checkpoint the walk may reach

        Returns:
            One RollbackResult per checkpoint rolled back to

        Raises:
            CheckpointNotFoundError: If target_id is not a known checkpoint
            NoValidCheckpointError: If nothing could be rolled back to
        """
        if target_id is not None:
            self.store.get(target_id)

        results = []
        for checkpoint in self._newest_first():
            reached_target = checkpoint.id == target_id

            if not self.store.validate(checkpoint.id)['valid']:
                logger.warning(f"Progressive rollback skipping invalid checkpoint {checkpoint.id}")
                if reached_target:
                    break
                continue

            result = self.rollback_to(checkpoint.id, validate_after=True)
            results.append(result)

            if not result.warnings:
                logger.info(f"Progressive rollback found a clean state at {checkpoint.id}")
                break
            if reached_target:
                break

        if not results:
            raise NoValidCheckpointError("No valid checkpoint available for progressive rollback")
        return results

    def verify_feasibility(self, checkpoint_id: str) -> Dict[str, Any]:
        """
        Check whether a rollback to the checkpoint can be performed.

        Returns:
            Dictionary with 'feasible' (bool), 'issues' and 'warnings' (lists of strings)
        """
        issues = []
        warnings = []

        validation = self.store.validate(checkpoint_id)
        issues.extend(validation['errors'])

        if validation['valid']:
            size = self.store.size(checkpoint_id)
            if size > LARGE_CHECKPOINT_BYTES:
                warnings.append(f"Large checkpoint ({size // (1024 * 1024)} MB); rollback may take a while")

            checkpoint = self.store.get(checkpoint_id)
            if checkpoint.metadata.build_status == BuildStatus.FAILED:
                warnings.append("Checkpoint was captured with a failing build")

        return {'feasible': not issues, 'issues': issues, 'warnings': warnings}

    def create_rollback_plan(self, checkpoint_id: str) -> Dict[str, Any]:
        """Describe what a rollback to the checkpoint would do, without doing it."""
        checkpoint = self.store.get(checkpoint_id)
        feasibility = self.verify_feasibility(checkpoint_id)
        return {
            'checkpoint': checkpoint.to_dict(),
            'feasible': feasibility['feasible'],
            'issues': feasibility['issues'],
            'warnings': feasibility['warnings'],
            'steps': [
                'Validate checkpoint integrity',
                'Back up current state (optional)',
                'Hold preserved files in memory (optional)',
                f"Restore project tree from {checkpoint.id}",
                'Write back preserved files (optional)',
                'Reinstall dependencies',
                'Validate restored project (optional)',
            ],
        }

    def _newest_first(self) -> List[Checkpoint]:
        checkpoints = self.store.list()
        ordered = sorted(enumerate(checkpoints), key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        return [checkpoint for _, checkpoint in ordered]

    def _read_preserved(self, preserve_files: Sequence[str]) -> Dict[str, bytes]:
        """Read preserved files into memory. Missing files are skipped."""
        root = self.store.project_path
        preserved = {}
        for relative_path in preserve_files:
            path = (root / relative_path).resolve()
            try:
                relative = path.relative_to(root)
            except ValueError:
                raise RollbackError(f"preserved path is outside the project: {relative_path}")
            if path.is_file():
                preserved[str(Path(relative))] = path.read_bytes()
            else:
                logger.debug(f"Preserved file {relative_path} does not exist; skipping")
        return preserved

    def _post_rollback_warnings(self) -> List[str]:
        if self.validation_runner is None:
            return ["No validation runner configured; restored project was not validated"]

        warnings = []
        for result in self.validation_runner.run_comprehensive():
            if not result.success:
                detail = f": {result.error}" if result.error else ""
                warnings.append(f"{result.message}{detail}")
        return warnings

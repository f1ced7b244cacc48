"""
Snapshot Store

Persists whole-project snapshots ("checkpoints") under the project's
storage directory and keeps an index of them in a JSON file:

    <project>/.ng-upgrade/checkpoints/<id>/...   captured tree
    <project>/.ng-upgrade/checkpoints.json       index, creation order
"""

import fnmatch
import json
import logging
import os
import re
import shutil
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..commands import CommandRunner
from ..config import CheckpointConfig, ValidationConfig
from ..exceptions import CheckpointNotFoundError, CommandTimeoutError, RollbackError
from ..models import BuildStatus, Checkpoint, CheckpointMetadata

logger = logging.getLogger(__name__)

INDEX_FILE = "checkpoints.json"
CHECKPOINTS_DIR = "checkpoints"


class SnapshotStore:
    """Sole reader and writer of checkpoint storage for one project."""

    def __init__(self, project_path: str, command_runner: Optional[CommandRunner] = None,
                 config: Optional[CheckpointConfig] = None,
                 validation_config: Optional[ValidationConfig] = None):
        """
        Initialize the snapshot store.

        Args:
            project_path: Root of the project to snapshot
            command_runner: Runner used to record build/test status and to
                reinstall dependencies after a restore; status is recorded as
                unknown without one
            config: Checkpoint configuration
            validation_config: Source of the build and test commands
        """
        self.project_path = Path(project_path).resolve()
        self.command_runner = command_runner
        self.config = config or CheckpointConfig()
        self.validation_config = validation_config or ValidationConfig()

        self.storage_root = self.project_path / self.config.storage_dir
        self.checkpoints_dir = self.storage_root / CHECKPOINTS_DIR
        self.index_file = self.storage_root / INDEX_FILE
        self.lock = threading.RLock()

        self.exclude_patterns = list(self.config.exclude_patterns)
        # The storage directory is always excluded so snapshots never contain snapshots
        storage_rel = os.path.relpath(self.storage_root, self.project_path)
        self._storage_rel = None if storage_rel.startswith(os.pardir) else Path(storage_rel).parts

    def initialize(self) -> None:
        """Create the storage directory and an empty index if missing."""
        with self.lock:
            self.checkpoints_dir.mkdir(parents=True, exist_ok=True)
            if not self.index_file.exists():
                self._write_index([])

    # ------------------------------------------------------------------
    # Capture and restore
    # ------------------------------------------------------------------

    def create_checkpoint(self, label: str, description: str) -> Checkpoint:
        """
        Capture the project tree and record it in the index.

        Args:
            label: Short name for the checkpoint (e.g. "initial", "step-15")
            description: Human-readable description

        Returns:
            The new Checkpoint
        """
        self.initialize()

        timestamp = datetime.now(timezone.utc)
        checkpoint_id = self._new_checkpoint_id(label, timestamp)
        storage = self.checkpoints_dir / checkpoint_id

        logger.info(f"Creating checkpoint {checkpoint_id}: {description}")
        # A fresh id per call means two writers never share a directory
        storage.mkdir(parents=True, exist_ok=False)
        try:
            file_count, captured_bytes = self._copy_tree(self.project_path, storage)
            metadata = self._generate_metadata(captured_bytes)
        except BaseException:
            shutil.rmtree(storage, ignore_errors=True)
            raise

        checkpoint = Checkpoint(
            id=checkpoint_id,
            label=label,
            version_label=self._current_version_label(),
            timestamp=timestamp,
            description=description,
            storage_location=str(storage),
            metadata=metadata,
        )

        with self.lock:
            records = self._read_index()
            records.append(checkpoint.to_dict())
            self._write_index(records)

        logger.debug(f"Checkpoint {checkpoint_id} captured {file_count} files ({captured_bytes} bytes)")
        return checkpoint

    def restore(self, checkpoint_id: str, reinstall: bool = True) -> List[str]:
        """
        Replace the project tree with the checkpoint's captured tree.

        Every project file outside the exclusion set is removed first, so any
        uncommitted state not captured in a checkpoint is lost. Installed
        dependencies are excluded from snapshots, so the configured install
        command is run afterwards against the restored manifest.

        Args:
            checkpoint_id: Checkpoint to restore
            reinstall: Run the dependency install command after restoring

        Returns:
            Warnings about the restore, e.g. a failed dependency reinstall

        Raises:
            CheckpointNotFoundError: If the id is not in the index
            RollbackError: If the checkpoint storage is missing
        """
        checkpoint = self.get(checkpoint_id)
        storage = Path(checkpoint.storage_location)
        if not storage.is_dir():
            raise RollbackError("checkpoint storage is missing", checkpoint_id)

        logger.info(f"Restoring project from checkpoint {checkpoint_id}")
        removed = self._clear_project()
        restored, _ = self._copy_tree(storage, self.project_path)
        logger.debug(f"Removed {removed} files, restored {restored} files from {checkpoint_id}")

        return self.reinstall_dependencies() if reinstall else []

    def reinstall_dependencies(self) -> List[str]:
        """Run the configured install command. Failures are returned as warnings."""
        command = self.config.install_command
        if not command:
            return []
        if self.command_runner is None:
            return [f"Dependencies were not reinstalled; run '{command}' manually"]

        timeout = self.config.install_timeout
        logger.info(f"Reinstalling dependencies: {command}")
        try:
            result = self.command_runner.run(command, cwd=str(self.project_path), timeout=timeout)
        except CommandTimeoutError:
            logger.warning(f"Dependency reinstall timed out after {timeout}s")
            return [f"Dependency reinstall timed out after {timeout}s; run '{command}' manually"]

        if not result.success:
            logger.warning(f"Dependency reinstall failed with exit status {result.returncode}")
            return [f"Dependency reinstall failed (exit status {result.returncode}); run '{command}' manually"]
        return []

    # ------------------------------------------------------------------
    # Index queries
    # ------------------------------------------------------------------

    def list(self) -> List[Checkpoint]:
        """List checkpoints in creation order."""
        with self.lock:
            records = self._read_index()
        checkpoints = []
        for record in records:
            try:
                checkpoints.append(Checkpoint.from_dict(record))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping invalid checkpoint record {record.get('id', '?')}: {e}")
        return checkpoints

    def get(self, checkpoint_id: str) -> Checkpoint:
        """
        Get a checkpoint by id.

        Raises:
            CheckpointNotFoundError: If the id is not in the index
        """
        for checkpoint in self.list():
            if checkpoint.id == checkpoint_id:
                return checkpoint
        raise CheckpointNotFoundError(checkpoint_id)

    def validate(self, checkpoint_id: str) -> Dict[str, Any]:
        """
        Check a checkpoint's integrity.

        Returns:
            Dictionary with 'valid' (bool) and 'errors' (list of strings)
        """
        errors = []
        try:
            checkpoint = self.get(checkpoint_id)
        except CheckpointNotFoundError:
            if (self.checkpoints_dir / checkpoint_id).is_dir():
                errors.append(f"Checkpoint storage exists but is not indexed: {checkpoint_id}")
            else:
                errors.append("Checkpoint not found")
            return {'valid': False, 'errors': errors}

        storage = Path(checkpoint.storage_location)
        if not storage.is_dir():
            errors.append("Checkpoint directory not found")
        else:
            for essential in self.config.essential_files:
                if not (storage / essential).exists():
                    errors.append(f"Essential file missing: {essential}")

        return {'valid': not errors, 'errors': errors}

    def verify_index(self) -> List[str]:
        """
        Cross-check the index against storage.

        Returns:
            List of inconsistencies (index entries without storage and
            storage directories without index entries)
        """
        errors = []
        indexed = set()
        for checkpoint in self.list():
            indexed.add(Path(checkpoint.storage_location).name)
            if not Path(checkpoint.storage_location).is_dir():
                errors.append(f"Index entry without storage: {checkpoint.id}")

        if self.checkpoints_dir.is_dir():
            for entry in sorted(self.checkpoints_dir.iterdir()):
                if entry.is_dir() and entry.name not in indexed:
                    errors.append(f"Storage without index entry: {entry.name}")
        return errors

    def size(self, checkpoint_id: str) -> int:
        """Get the on-disk size of a checkpoint in bytes."""
        checkpoint = self.get(checkpoint_id)
        return _directory_size(Path(checkpoint.storage_location))

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def delete(self, checkpoint_id: str) -> None:
        """
        Delete a checkpoint's storage and index entry.

        Raises:
            CheckpointNotFoundError: If the id is not in the index
        """
        with self.lock:
            checkpoint = self.get(checkpoint_id)
            shutil.rmtree(checkpoint.storage_location, ignore_errors=True)
            records = [r for r in self._read_index() if r.get('id') != checkpoint_id]
            self._write_index(records)
        logger.info(f"Deleted checkpoint {checkpoint_id}")

    def cleanup(self, keep: Optional[int] = None) -> List[str]:
        """
        Delete all but the most recent checkpoints.

        Args:
            keep: Number of checkpoints to keep; defaults to the configured retention

        Returns:
            Ids of the deleted checkpoints
        """
        keep = self.config.retention if keep is None else keep
        if keep < 0:
            raise ValueError("keep cannot be negative")

        with self.lock:
            checkpoints = self.list()
            if len(checkpoints) <= keep:
                return []

            # Newest first; index position breaks timestamp ties
            ordered = sorted(enumerate(checkpoints), key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
            to_delete = [checkpoint for _, checkpoint in ordered[keep:]]
            for checkpoint in to_delete:
                self.delete(checkpoint.id)

        logger.info(f"Checkpoint cleanup removed {len(to_delete)} checkpoints, kept {keep}")
        return [checkpoint.id for checkpoint in to_delete]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def is_excluded(self, relative_path: str) -> bool:
        """Check whether any component of a project-relative path is excluded."""
        parts = Path(relative_path).parts
        if self._storage_rel and parts[:len(self._storage_rel)] == self._storage_rel:
            return True
        for part in parts:
            for pattern in self.exclude_patterns:
                if fnmatch.fnmatch(part, pattern):
                    return True
        return False

    def _copy_tree(self, source: Path, destination: Path):
        """Copy non-excluded files from source into destination. Returns (files, bytes)."""
        file_count = 0
        total_bytes = 0
        for dirpath, dirnames, filenames in os.walk(source):
            rel_dir = os.path.relpath(dirpath, source)
            rel_dir = "" if rel_dir == "." else rel_dir

            target_dir = destination / rel_dir
            target_dir.mkdir(parents=True, exist_ok=True)

            kept = []
            for dirname in sorted(dirnames):
                rel_sub = os.path.join(rel_dir, dirname)
                if self.is_excluded(rel_sub):
                    continue
                if os.path.islink(os.path.join(dirpath, dirname)):
                    _copy_link(Path(dirpath) / dirname, destination / rel_sub)
                    file_count += 1
                    continue
                kept.append(dirname)
            dirnames[:] = kept

            for filename in sorted(filenames):
                rel_file = os.path.join(rel_dir, filename)
                if self.is_excluded(rel_file):
                    continue
                src_file = Path(dirpath) / filename
                if src_file.is_symlink():
                    _copy_link(src_file, destination / rel_file)
                    file_count += 1
                    continue
                shutil.copy2(src_file, destination / rel_file)
                file_count += 1
                total_bytes += src_file.stat().st_size
        return file_count, total_bytes

    def _clear_project(self) -> int:
        """Remove every non-excluded file and then any emptied directories."""
        removed = 0
        visited_dirs = []
        for dirpath, dirnames, filenames in os.walk(self.project_path):
            rel_dir = os.path.relpath(dirpath, self.project_path)
            rel_dir = "" if rel_dir == "." else rel_dir

            kept = []
            for dirname in dirnames:
                full = os.path.join(dirpath, dirname)
                if self.is_excluded(os.path.join(rel_dir, dirname)):
                    continue
                if os.path.islink(full):
                    os.unlink(full)
                    removed += 1
                    continue
                kept.append(dirname)
                visited_dirs.append(full)
            dirnames[:] = kept

            for filename in filenames:
                if not self.is_excluded(os.path.join(rel_dir, filename)):
                    os.unlink(os.path.join(dirpath, filename))
                    removed += 1

        # Deepest first; directories still holding excluded files stay
        for full in reversed(visited_dirs):
            if not os.listdir(full):
                os.rmdir(full)
        return removed

    def _generate_metadata(self, captured_bytes: int) -> CheckpointMetadata:
        manifest = self._read_json(self.project_path / 'package.json')
        dependencies = {}
        dependencies.update(manifest.get('dependencies') or {})
        dependencies.update(manifest.get('devDependencies') or {})

        build_status = BuildStatus.UNKNOWN
        test_status = BuildStatus.UNKNOWN
        if self.config.capture_build_status:
            build_status = self._command_status(self.validation_config.build_command, 'build')
        if self.config.capture_test_status:
            test_status = self._command_status(self.validation_config.test_command, 'test')

        return CheckpointMetadata(
            dependencies=dependencies,
            build_status=build_status,
            test_status=test_status,
            project_size=captured_bytes,
            configuration=self._read_json(self.project_path / 'angular.json'),
        )

    def _command_status(self, command: str, kind: str) -> BuildStatus:
        if self.command_runner is None or not command:
            return BuildStatus.UNKNOWN
        timeout = self.validation_config.timeouts.get(kind, 300.0)
        try:
            result = self.command_runner.run(command, cwd=str(self.project_path), timeout=timeout)
        except CommandTimeoutError:
            logger.warning(f"Checkpoint {kind} status timed out after {timeout}s")
            return BuildStatus.FAILED
        return BuildStatus.SUCCESS if result.success else BuildStatus.FAILED

    def _current_version_label(self) -> str:
        manifest = self._read_json(self.project_path / 'package.json')
        for section in ('dependencies', 'devDependencies'):
            version = (manifest.get(section) or {}).get(self.validation_config.core_package)
            if version:
                return re.sub(r'^[\^~]', '', str(version))
        return 'unknown'

    @staticmethod
    def _new_checkpoint_id(label: str, timestamp: datetime) -> str:
        slug = re.sub(r'[^A-Za-z0-9_.-]+', '-', label).strip('-') or 'checkpoint'
        return f"{slug}-{timestamp.strftime('%Y%m%dT%H%M%S')}-{uuid.uuid4().hex[:8]}"

    @staticmethod
    def _read_json(path: Path) -> Dict:
        if not path.exists():
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read {path.name}: {e}")
            return {}

    def _read_index(self) -> List[Dict[str, Any]]:
        if not self.index_file.exists():
            return []
        with open(self.index_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return list(data.get('checkpoints') or [])

    def _write_index(self, records: List[Dict[str, Any]]) -> None:
        self.storage_root.mkdir(parents=True, exist_ok=True)
        tmp_file = self.index_file.with_suffix('.json.tmp')
        with open(tmp_file, 'w', encoding='utf-8') as f:
            json.dump({'checkpoints': records}, f, indent=2)
        # Readers see either the old or the new index, never a partial one
        os.replace(tmp_file, self.index_file)


def _copy_link(source: Path, destination: Path) -> None:
    if destination.is_symlink() or destination.is_file():
        destination.unlink()
    elif destination.is_dir():
        shutil.rmtree(destination)
    os.symlink(os.readlink(source), destination)


def _directory_size(path: Path) -> int:
    total = 0
    for dirpath, _, filenames in os.walk(path):
        for filename in filenames:
            file_path = os.path.join(dirpath, filename)
            if not os.path.islink(file_path):
                total += os.path.getsize(file_path)
    return total

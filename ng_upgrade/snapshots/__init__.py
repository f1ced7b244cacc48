"""
Snapshots Module

Checkpoint capture, restore and retention for the project file tree.
"""

from .store import SnapshotStore

__all__ = ['SnapshotStore']

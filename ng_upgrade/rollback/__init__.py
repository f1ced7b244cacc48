"""
Rollback Module

Restores the project to a previously captured checkpoint.
"""

from .controller import RollbackController

__all__ = ['RollbackController']

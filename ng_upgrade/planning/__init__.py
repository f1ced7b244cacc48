"""
Planning Module

Turns a (current, target) version pair into an ordered upgrade plan.
"""

from .path_planner import PathPlanner

__all__ = ['PathPlanner']

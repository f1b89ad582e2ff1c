"""
API routers
"""

from . import workflows, triggers, executions, scheduler, monitoring

__all__ = ["workflows", "triggers", "executions", "scheduler", "monitoring"]

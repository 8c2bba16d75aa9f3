"""Workflow definitions, task workers and execution control for Conductor-style servers."""

__version__ = "0.1.0"

__all__ = [
    "executor",
    "flow",
    "integration",
    "monitor",
    "task",
    "task_runner",
    "workflow",
]
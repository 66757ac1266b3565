"""
Digest content: task aggregation and HTML rendering.

Both halves are pure so they can be unit tested without a database.
"""

from .summary import TaskRecord, TaskSummary, summarize_tasks
from .renderer import DigestRenderer

__all__ = [
    "TaskRecord",
    "TaskSummary",
    "summarize_tasks",
    "DigestRenderer",
]

"""Repository implementations for the practice digest service."""

from .notification_job_repository import NotificationJobRepository
from .directory_repository import DirectoryRepository
from .task_repository import TaskRepository

__all__ = [
    "NotificationJobRepository",
    "DirectoryRepository",
    "TaskRepository",
]

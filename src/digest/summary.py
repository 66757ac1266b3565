"""
Task Summary Aggregator.

Turns a flat list of task records into the categorized buckets shown in a
digest. Pure: no database or network access, the caller passes ``now``.

Bucket rules:
- overdue:          due strictly before now
- today:            due within today's local bounds (inclusive), even if
                    also overdue
- tomorrow:         due within tomorrow's local bounds (inclusive)
- remaining:        due after the end of tomorrow
- review:           status ready_for_review, independent of due date
- awaiting_client:  status awaiting_client_data, independent of due date

filed_completed tasks are ignored entirely. Undated tasks only appear in the
status buckets.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from digest.timezones import ensure_aware_utc, local_day_bounds, resolve_timezone

DEFAULT_TIMEZONE = "Asia/Kolkata"

# Task status values as stored in tasks.status
STATUS_FILED_COMPLETED = "filed_completed"
STATUS_READY_FOR_REVIEW = "ready_for_review"
STATUS_AWAITING_CLIENT_DATA = "awaiting_client_data"


@dataclass(frozen=True)
class TaskRecord:
    """Read-only view of a task as needed for a digest."""
    task_id: UUID
    title: str
    status: str
    due_date: Optional[datetime] = None
    client_name: Optional[str] = None
    assignee_name: Optional[str] = None


@dataclass
class TaskSummary:
    """Categorized tasks for one digest section set."""
    overdue: List[TaskRecord] = field(default_factory=list)
    today: List[TaskRecord] = field(default_factory=list)
    tomorrow: List[TaskRecord] = field(default_factory=list)
    remaining: List[TaskRecord] = field(default_factory=list)
    review: List[TaskRecord] = field(default_factory=list)
    awaiting_client: List[TaskRecord] = field(default_factory=list)
    total_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.total_count == 0

    def counts(self) -> Dict[str, int]:
        return {
            "overdue": len(self.overdue),
            "today": len(self.today),
            "tomorrow": len(self.tomorrow),
            "remaining": len(self.remaining),
            "review": len(self.review),
            "awaiting_client": len(self.awaiting_client),
            "total": self.total_count,
        }


def _sort_key(task: TaskRecord):
    due = ensure_aware_utc(task.due_date).timestamp() if task.due_date else 0.0
    return (task.due_date is None, due, task.title or "")


def summarize_tasks(
    tasks: Iterable[TaskRecord],
    now: datetime,
    timezone_name: Optional[str] = None,
) -> TaskSummary:
    """
    Categorize tasks relative to ``now`` in the given time zone.

    Args:
        tasks: Task records already scoped by the caller
        now: Current instant (naive values are read as UTC)
        timezone_name: IANA zone that defines "today"; unknown or missing
            zones use Asia/Kolkata

    Returns:
        TaskSummary with each bucket sorted by due date, undated last, then title
    """
    tz, _ = resolve_timezone(timezone_name, DEFAULT_TIMEZONE)
    now = ensure_aware_utc(now)

    today_start, today_end = local_day_bounds(now, tz)
    tomorrow_start, tomorrow_end = local_day_bounds(now, tz, offset_days=1)

    summary = TaskSummary()

    for task in tasks:
        if task.status == STATUS_FILED_COMPLETED:
            continue

        summary.total_count += 1

        if task.status == STATUS_READY_FOR_REVIEW:
            summary.review.append(task)
        elif task.status == STATUS_AWAITING_CLIENT_DATA:
            summary.awaiting_client.append(task)

        if task.due_date is None:
            continue

        due = ensure_aware_utc(task.due_date)

        if due < now:
            summary.overdue.append(task)

        if today_start <= due <= today_end:
            summary.today.append(task)
        elif tomorrow_start <= due <= tomorrow_end:
            summary.tomorrow.append(task)
        elif due > tomorrow_end:
            summary.remaining.append(task)

    for bucket in (
        summary.overdue, summary.today, summary.tomorrow,
        summary.remaining, summary.review, summary.awaiting_client,
    ):
        bucket.sort(key=_sort_key)

    return summary

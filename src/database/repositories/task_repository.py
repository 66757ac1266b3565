"""Task data source for digests.

Returns open tasks (anything but filed_completed) as TaskRecord views with
the client and assignee names already resolved.
"""

from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from database.models import Client, StaffUser, Task, TaskStatus
from digest.summary import TaskRecord
from digest.timezones import ensure_aware_utc

logger = logging.getLogger(__name__)


class TaskRepository:
    """Read-only queries over the tasks table."""

    def __init__(self, session: Session):
        self._session = session

    def open_tasks_for_assignee(self, user_id: UUID) -> List[TaskRecord]:
        """Open tasks assigned to one recipient."""
        return self._fetch(Task.assigned_to == user_id)

    def open_tasks_for_firm(self, firm_id: UUID) -> List[TaskRecord]:
        """All open tasks of a firm."""
        return self._fetch(Task.firm_id == firm_id)

    def open_tasks_created_by(self, user_id: UUID, firm_id: Optional[UUID] = None) -> List[TaskRecord]:
        """Open tasks a recipient created, optionally limited to one firm."""
        criteria = [Task.created_by == user_id]
        if firm_id is not None:
            criteria.append(Task.firm_id == firm_id)
        return self._fetch(*criteria)

    def _fetch(self, *criteria) -> List[TaskRecord]:
        assignee = aliased(StaffUser)
        query = (
            select(
                Task.task_id,
                Task.title,
                Task.status,
                Task.due_date,
                Client.name,
                assignee.full_name,
            )
            .outerjoin(Client, Client.client_id == Task.client_id)
            .outerjoin(assignee, assignee.user_id == Task.assigned_to)
            .where(Task.status != TaskStatus.FILED_COMPLETED.value)
            .where(*criteria)
            .order_by(Task.due_date, Task.title)
        )

        return [
            TaskRecord(
                task_id=task_id,
                title=title,
                status=status,
                due_date=ensure_aware_utc(due_date) if due_date else None,
                client_name=client_name,
                assignee_name=assignee_name,
            )
            for task_id, title, status, due_date, client_name, assignee_name
            in self._session.execute(query).all()
        ]

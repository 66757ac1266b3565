"""Firm and recipient directory lookups (read-only)."""

from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database.models import Firm, StaffUser

logger = logging.getLogger(__name__)


class DirectoryRepository:
    """Read access to firms and their staff."""

    def __init__(self, session: Session):
        self._session = session

    def list_active_firms(self) -> List[Firm]:
        query = select(Firm).where(Firm.is_active == True).order_by(Firm.name)  # noqa: E712
        return list(self._session.execute(query).scalars().all())

    def get_firm(self, firm_id: UUID) -> Optional[Firm]:
        return self._session.get(Firm, firm_id)

    def list_active_recipients(self, firm_id: UUID) -> List[StaffUser]:
        """Active staff of a firm, in a stable order."""
        query = (
            select(StaffUser)
            .where(StaffUser.firm_id == firm_id)
            .where(StaffUser.is_active == True)  # noqa: E712
            .order_by(StaffUser.full_name, StaffUser.user_id)
        )
        return list(self._session.execute(query).scalars().all())

    def get_recipient(self, user_id: UUID) -> Optional[StaffUser]:
        return self._session.get(StaffUser, user_id)

    def find_recipient_by_email(self, email: str) -> Optional[StaffUser]:
        """Case-insensitive lookup by email address."""
        query = select(StaffUser).where(func.lower(StaffUser.email) == email.strip().lower())
        return self._session.execute(query).scalars().first()

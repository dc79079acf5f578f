"""Absence Service - Persists planned absences."""

import logging
from datetime import date, datetime

from ..core.absences import plan_absence
from ..core.models import Absence


logger = logging.getLogger(__name__)


class AbsenceService:
    def __init__(self, store) -> None:
        self._store = store

    def plan(self, user_id: str, absence_date: date, recovery_weeks: list[str], now: datetime) -> Absence:
        """Freeze the week of ``absence_date`` and store the recovery plan.

        Raises:
            ValidationError: If the recovery weeks are not a valid choice
        """
        absence = plan_absence(user_id, absence_date, recovery_weeks, now=now)
        stored = self._store.add_absence(absence)
        logger.info(
            "Absence planned for %s: %s frozen, recovery %s",
            user_id, stored.frozen_week_id, stored.missed_sessions_per_recovery_week,
        )
        return stored

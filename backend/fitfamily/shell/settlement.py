"""Settlement Service - Closes a week for every family member.

Each member is settled in its own transaction that refuses to run twice for
the same week, so closing a week again is a no-op.
"""

import logging
from datetime import datetime
from functools import partial

from ..core.absences import is_week_frozen, recovery_sessions_for
from ..core.models import SettlementReport
from ..core.rules import FAMILY
from ..core.settlement import settle_user_week
from ..core.status import count_sessions
from ..core.weeks import parse_week_id, week_id as week_id_for
from .snapshot import LOAD_TIMEOUT_SECONDS, load_week_snapshot


logger = logging.getLogger(__name__)


class SettlementService:
    """Applies the weekly fines, lives and shields."""

    def __init__(self, store, load_timeout: float = LOAD_TIMEOUT_SECONDS) -> None:
        self._store = store
        self._load_timeout = load_timeout

    def close_week(self, now: datetime, week: str | None = None) -> SettlementReport:
        """Settle a week for the whole family.

        Args:
            now: Current time; stamped on summaries and used for the default week
            week: Week to close (defaults to the week containing ``now``)

        Returns:
            SettlementReport listing new summaries and members whose week
            was already closed
        """
        week = week or week_id_for(now.date())
        parse_week_id(week)
        logger.info("Closing week %s", week)

        snapshot = load_week_snapshot(self._store, week, timeout=self._load_timeout)
        report = SettlementReport(week_id=week)

        for member in FAMILY:
            justified = any(
                j.user_id == member.id and j.accepted for j in snapshot.justifications
            )
            settle = partial(
                settle_user_week,
                week_id=week,
                sessions=count_sessions(snapshot.workouts, member.id, week),
                recovery_sessions=recovery_sessions_for(snapshot.absences, member.id, week),
                frozen=is_week_frozen(snapshot.absences, member.id, week),
                justified=justified,
                closed_at=now,
            )

            summary = self._store.apply_settlement(member.id, week, settle)
            if summary is None:
                logger.warning("Week %s already closed for %s", week, member.id)
                report.already_closed.append(member.id)
                continue

            logger.info(
                "Settled %s for %s: %s, fine %d",
                week, member.id, summary.status.value, summary.fine_applied,
            )
            report.summaries.append(summary)

        return report

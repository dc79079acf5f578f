"""Absence Planning - Frozen weeks and recovery-session distribution.

All functions are pure: same input always produces same output, no side effects.
"""

import math
from datetime import date, datetime
from typing import Iterable

from .errors import ValidationError
from .models import Absence
from .rules import WEEKLY_GOAL
from .weeks import adjacent_weeks, week_id


def distribute_recovery_sessions(
    recovery_weeks: list[str], goal: int = WEEKLY_GOAL
) -> dict[str, int]:
    """Spread a frozen week's sessions over the chosen recovery weeks.

    Each week takes ``ceil(goal / n)`` sessions until the goal is used up, in
    the order the weeks were chosen, so later weeks absorb the remainder.

    Args:
        recovery_weeks: Recovery week ids, in selection order
        goal: Sessions to redistribute

    Returns:
        Mapping of week id to owed sessions; values sum to ``goal``
    """
    if not recovery_weeks:
        raise ValidationError("Choose at least one recovery week.")

    per_week = math.ceil(goal / len(recovery_weeks))
    remaining = goal
    distribution: dict[str, int] = {}
    for week in recovery_weeks:
        assigned = min(per_week, remaining)
        distribution[week] = assigned
        remaining -= assigned
    return distribution


def plan_absence(
    user_id: str,
    absence_date: date,
    recovery_weeks: list[str],
    now: datetime | None = None,
) -> Absence:
    """Build an absence record freezing the week of ``absence_date``.

    Raises:
        ValidationError: If the recovery weeks are empty, repeated, include
            the frozen week, or are not adjacent to it
    """
    frozen = week_id(absence_date)

    if not recovery_weeks:
        raise ValidationError("Choose the absence week and at least one recovery week.")
    if len(set(recovery_weeks)) != len(recovery_weeks):
        raise ValidationError("Each recovery week can only be chosen once.")
    if frozen in recovery_weeks:
        raise ValidationError("The frozen week cannot also be a recovery week.")

    allowed = set(adjacent_weeks(frozen))
    outside = [w for w in recovery_weeks if w not in allowed]
    if outside:
        raise ValidationError(
            f"Recovery weeks must be within two weeks of {frozen}: {', '.join(outside)}"
        )

    fields = dict(
        user_id=user_id,
        frozen_week_id=frozen,
        recovery_weeks=list(recovery_weeks),
        missed_sessions_per_recovery_week=distribute_recovery_sessions(recovery_weeks),
    )
    if now is not None:
        fields["created_at"] = now
    return Absence(**fields)


def recovery_sessions_for(absences: Iterable[Absence], user_id: str, week: str) -> int:
    """Make-up sessions a user owes in a week across all their absences."""
    return sum(
        a.missed_sessions_per_recovery_week.get(week, 0)
        for a in absences
        if a.user_id == user_id and week in a.recovery_weeks
    )


def is_week_frozen(absences: Iterable[Absence], user_id: str, week: str) -> bool:
    return any(a.user_id == user_id and a.frozen_week_id == week for a in absences)

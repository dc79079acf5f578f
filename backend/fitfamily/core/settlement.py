"""Weekly Settlement - Pure state transition of a member's ledger at week close.

All functions are pure: same input always produces same output, no side effects.
Persistence and the closed-week guard live in the shell.
"""

from datetime import datetime

from .models import UserProfile, WeeklySummary, WeekStatus
from .rules import (
    BASE_FINE,
    EXTRA_LIFE_THRESHOLD,
    MAX_FINE,
    SHIELD_STREAK,
    WEEKLY_GOAL,
)


def halve_fine_level(level: int) -> int:
    """Fine level after a successful week, floored at BASE_FINE."""
    return max(BASE_FINE, level // 2)


def double_fine_level(level: int) -> int:
    """Fine level after a fined miss, capped at MAX_FINE."""
    return min(MAX_FINE, level * 2)


def _record_success(profile: UserProfile) -> tuple[UserProfile, bool]:
    """Apply the success branch shared by goal-met and life-covered weeks.

    Returns:
        Tuple of (updated profile, whether a shield was earned)
    """
    successes = profile.consecutive_successes + 1
    shield_earned = successes >= SHIELD_STREAK and not profile.has_shield
    updated = profile.model_copy(update={
        "current_fine_level": halve_fine_level(profile.current_fine_level),
        "consecutive_misses": 0,
        "consecutive_successes": successes,
        "has_shield": profile.has_shield or shield_earned,
    })
    return updated, shield_earned


def settle_user_week(
    profile: UserProfile,
    week_id: str,
    sessions: int,
    recovery_sessions: int = 0,
    frozen: bool = False,
    justified: bool = False,
    closed_at: datetime | None = None,
) -> tuple[UserProfile, WeeklySummary]:
    """Settle one member's week.

    Args:
        profile: Ledger state before this week
        week_id: The week being closed
        sessions: Workouts logged by the member in the week
        recovery_sessions: Make-up sessions owed in the week from absences
        frozen: Whether the week is frozen by a planned absence
        justified: Whether an accepted justification exists for the week
        closed_at: Timestamp stamped on the summary

    Returns:
        Tuple of (updated profile, weekly summary)
    """
    if frozen:
        summary = WeeklySummary(
            user_id=profile.id,
            week_id=week_id,
            status=WeekStatus.FROZEN,
            sessions=0,
            total_required=0,
            closed_at=closed_at,
        )
        return profile, summary

    total_required = WEEKLY_GOAL + recovery_sessions
    deficit = total_required - sessions

    fine_applied = 0
    life_used = life_earned = shield_earned = shield_broken = False
    status = WeekStatus.COMPLETED

    if deficit <= 0:
        updated, shield_earned = _record_success(profile)
        # Recovery sessions do not count towards earning a life
        if sessions - recovery_sessions >= EXTRA_LIFE_THRESHOLD:
            life_earned = True
            updated = updated.model_copy(update={"extra_lives": updated.extra_lives + 1})
    elif deficit == 1 and profile.extra_lives > 0:
        life_used = True
        updated, shield_earned = _record_success(
            profile.model_copy(update={"extra_lives": profile.extra_lives - 1})
        )
    elif justified:
        status = WeekStatus.JUSTIFIED
        updated = profile.model_copy(update={"consecutive_successes": 0})
    else:
        status = WeekStatus.MISSED
        fine_applied = profile.current_fine_level
        has_shield = profile.has_shield
        if has_shield:
            fine_applied //= 2
            has_shield = False
            shield_broken = True
        updated = profile.model_copy(update={
            "wallet_balance": profile.wallet_balance + fine_applied,
            "consecutive_misses": profile.consecutive_misses + 1,
            "consecutive_successes": 0,
            "current_fine_level": double_fine_level(profile.current_fine_level),
            "has_shield": has_shield,
        })

    summary = WeeklySummary(
        user_id=profile.id,
        week_id=week_id,
        status=status,
        sessions=sessions,
        total_required=total_required,
        recovery_sessions=recovery_sessions,
        fine_applied=fine_applied,
        life_used=life_used,
        life_earned=life_earned,
        shield_earned=shield_earned,
        shield_broken=shield_broken,
        deficit=max(0, deficit),
        closed_at=closed_at,
    )
    return updated, summary

"""Live Status - Pre-settlement progress views for the current week.

All functions are pure: same input always produces same output, no side effects.
"""

from typing import Iterable

from .absences import is_week_frozen, recovery_sessions_for
from .models import Absence, UserProfile, UserWeekStatus, Workout
from .rules import EXTRA_LIFE_THRESHOLD, WEEKLY_GOAL


def avatar_mood(profile: UserProfile) -> str:
    """Pick 'happy', 'sad' or 'normal' from a member's streaks and fines."""
    if profile.has_shield or profile.consecutive_successes >= 3:
        return "happy"
    if profile.consecutive_misses > 0 and profile.wallet_balance > 0:
        return "sad"
    return "normal"


def count_sessions(workouts: Iterable[Workout], user_id: str, week_id: str) -> int:
    return sum(1 for w in workouts if w.user_id == user_id and w.week_id == week_id)


def user_week_status(
    profile: UserProfile,
    week_id: str,
    workouts: Iterable[Workout],
    absences: Iterable[Absence],
) -> UserWeekStatus:
    """Calculate a member's progress towards this week's requirement.

    Args:
        profile: The member's ledger
        week_id: The week to evaluate
        workouts: Workouts for the week (other weeks are ignored)
        absences: All absences on record

    Returns:
        UserWeekStatus for the member
    """
    absences = list(absences)
    sessions = count_sessions(workouts, profile.id, week_id)
    recovery = recovery_sessions_for(absences, profile.id, week_id)
    frozen = is_week_frozen(absences, profile.id, week_id)
    total_required = 0 if frozen else WEEKLY_GOAL + recovery

    return UserWeekStatus(
        user_id=profile.id,
        week_id=week_id,
        sessions=sessions,
        total_required=total_required,
        regular_sessions=min(sessions, WEEKLY_GOAL),
        recovery_sessions=recovery,
        bonus_sessions=max(0, sessions - WEEKLY_GOAL - recovery),
        frozen=frozen,
        goal_met=sessions >= total_required,
        progress=min(1.0, sessions / total_required) if total_required > 0 else 1.0,
        can_earn_life=not frozen and sessions >= EXTRA_LIFE_THRESHOLD + recovery,
        mood=avatar_mood(profile),
    )


def total_pot(profiles: Iterable[UserProfile]) -> int:
    """Sum of every member's accumulated fines."""
    return sum(p.wallet_balance for p in profiles)


def wall_of_shame(profiles: Iterable[UserProfile]) -> list[UserProfile]:
    """Members with outstanding fines, largest balance first."""
    return sorted(
        (p for p in profiles if p.wallet_balance > 0),
        key=lambda p: p.wallet_balance,
        reverse=True,
    )

"""MCP Server - Tool definitions for the family challenge.

Defines the MCP tools a client can invoke: logging workouts, live status,
closing a week, planning absences, justifications and flag votes.
Handles authentication via the member token in the Authorization header.
"""

import base64
import binascii
import functools
import logging
import os
from contextvars import ContextVar
from datetime import date
from typing import Any, Callable

from mcp.server.fastmcp import FastMCP

from ..core.errors import FitFamilyError, ValidationError
from ..core.models import PhotoUpload, VoteChoice, utc_now
from ..core.rules import FAMILY, format_clp
from ..core.status import total_pot, user_week_status, wall_of_shame
from ..core.weeks import (
    adjacent_weeks,
    format_week_label,
    upcoming_weeks,
    week_id as week_id_for,
)
from .absences import AbsenceService
from .auth import PinAuthClient
from .firestore_client import FirestoreConfig, FitFamilyFirestoreClient
from .flags import FlagService
from .judge import GeminiExcuseJudge, JudgeConfig
from .justifications import JustificationService
from .settlement import SettlementService
from .snapshot import load_week_snapshot
from .workouts import WorkoutService


logger = logging.getLogger(__name__)

# Context variable to store current member id per request
current_user_id: ContextVar[str | None] = ContextVar("current_user_id", default=None)

mcp = FastMCP(
    "fitfamily",
    instructions="""FitFamily - Family fitness accountability challenge.

Each member must log 3 workouts per week. Missed weeks add escalating fines
to the family pot; streaks earn extra lives and a shield.

Use week_status to show progress. Log sessions with log_workout.
Planned absences are frozen in advance with plan_absence; unforeseen ones
are justified with submit_justification. close_week settles a week.""",
    stateless_http=True,
)

# Lazy-initialized clients
_firestore_client: FitFamilyFirestoreClient | None = None
_auth_client: PinAuthClient | None = None
_judge: GeminiExcuseJudge | None = None


def get_firestore_client() -> FitFamilyFirestoreClient:
    """Get or create Firestore client."""
    global _firestore_client
    if _firestore_client is None:
        config = FirestoreConfig(
            project_id=os.environ.get("GOOGLE_CLOUD_PROJECT"),
            database=os.environ.get("FIRESTORE_DATABASE", "fitfamily"),
        )
        _firestore_client = FitFamilyFirestoreClient(config)
    return _firestore_client


def get_auth_client() -> PinAuthClient:
    """Get or create PIN auth client."""
    global _auth_client
    if _auth_client is None:
        _auth_client = PinAuthClient(get_firestore_client())
    return _auth_client


def get_judge() -> GeminiExcuseJudge:
    global _judge
    if _judge is None:
        _judge = GeminiExcuseJudge(JudgeConfig())
    return _judge


def get_user_id() -> str:
    """Get current authenticated member ID.

    Raises:
        ValidationError: If no member is authenticated
    """
    user_id = current_user_id.get()
    if user_id is None:
        raise ValidationError("Not logged in. Provide 'Bearer <userId>:<pin>'.")
    return user_id


def reports_errors(func: Callable[..., dict]) -> Callable[..., dict]:
    """Turn domain failures into an error payload instead of a fault."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> dict:
        try:
            return func(*args, **kwargs)
        except FitFamilyError as e:
            logger.warning("%s failed: %s", func.__name__, e.detail)
            return {"error": e.detail}

    return wrapper


def _decode_photo(photo_base64: str | None, filename: str = "photo.jpg") -> PhotoUpload | None:
    if not photo_base64:
        return None
    # Accept data URLs as sent by browsers
    payload = photo_base64.split(",", 1)[1] if photo_base64.startswith("data:") else photo_base64
    content_type = "image/jpeg"
    if photo_base64.startswith("data:") and ";" in photo_base64:
        content_type = photo_base64[5:photo_base64.index(";")]
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("The photo is not valid base64.") from e
    return PhotoUpload(data=data, filename=filename, content_type=content_type)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD.") from e


# ==================== Workout Tools ====================


@mcp.tool()
@reports_errors
def log_workout(
    workout_date: str,
    exercise_type: str,
    duration: int,
    photo_url: str | None = None,
    photo_base64: str | None = None,
    description: str | None = None,
) -> dict:
    """Log a workout for the current member.

    Args:
        workout_date: Day of the session (YYYY-MM-DD)
        exercise_type: e.g. "Running", "Weights", "Yoga"
        duration: Minutes
        photo_url: URL of an already uploaded photo
        photo_base64: Photo bytes, checked against the workout date
        description: Optional details

    Returns:
        The stored workout and any advisory note about the photo's date
    """
    user_id = get_user_id()
    service = WorkoutService(get_firestore_client())

    workout, check = service.log_workout(
        user_id=user_id,
        workout_date=_parse_date(workout_date),
        exercise_type=exercise_type,
        duration=duration,
        now=utc_now(),
        photo=_decode_photo(photo_base64),
        photo_url=photo_url,
        description=description,
    )
    result: dict = {"workout": workout.model_dump(mode="json")}
    if check is not None and check.message:
        result["photo_note"] = check.message
    return result


@mcp.tool()
@reports_errors
def recent_feed(limit: int = 50) -> dict:
    """Newest workouts across the family."""
    workouts = WorkoutService(get_firestore_client()).feed(limit)
    return {"workouts": [w.model_dump(mode="json") for w in workouts]}


@mcp.tool()
@reports_errors
def my_workouts() -> dict:
    """The current member's workouts, most recent first."""
    user_id = get_user_id()
    workouts = get_firestore_client().get_workouts_by_user(user_id)
    return {"workouts": [w.model_dump(mode="json") for w in workouts]}


# ==================== Week Tools ====================


@mcp.tool()
@reports_errors
def week_status(week: str | None = None) -> dict:
    """Live progress of every member for a week (defaults to this week).

    Returns:
        Per-member status, the family pot and the wall of shame
    """
    get_user_id()
    week = week or week_id_for(utc_now().date())
    snapshot = load_week_snapshot(get_firestore_client(), week)

    members = [
        user_week_status(profile, week, snapshot.workouts, snapshot.absences).model_dump()
        for profile in snapshot.profiles
    ]
    return {
        "week": week,
        "label": format_week_label(week),
        "members": members,
        "pot": format_clp(total_pot(snapshot.profiles)),
        "wall_of_shame": [
            {"name": p.name, "owes": format_clp(p.wallet_balance)}
            for p in wall_of_shame(snapshot.profiles)
        ],
    }


@mcp.tool()
@reports_errors
def close_week(week: str | None = None) -> dict:
    """Settle a week: apply fines, lives and shields. Safe to repeat.

    Args:
        week: Week id such as "2025-W24" (defaults to this week)
    """
    get_user_id()
    report = SettlementService(get_firestore_client()).close_week(utc_now(), week)
    return report.model_dump(mode="json")


@mcp.tool()
@reports_errors
def weekly_history() -> dict:
    """The current member's settled weeks, most recent first."""
    user_id = get_user_id()
    summaries = get_firestore_client().get_user_summaries(user_id)
    return {"history": [s.model_dump(mode="json") for s in summaries]}


@mcp.tool()
@reports_errors
def plan_absence(absence_date: str, recovery_weeks: list[str]) -> dict:
    """Freeze the week of a planned absence and spread its sessions.

    Args:
        absence_date: Any day in the week to freeze (YYYY-MM-DD)
        recovery_weeks: Week ids, in order, that absorb the missed sessions
    """
    user_id = get_user_id()
    absence = AbsenceService(get_firestore_client()).plan(
        user_id, _parse_date(absence_date), recovery_weeks, now=utc_now()
    )
    return {"absence": absence.model_dump(mode="json")}


@mcp.tool()
@reports_errors
def absence_options(absence_date: str | None = None) -> dict:
    """Weeks that can be frozen, or the recovery weeks for a chosen absence.

    Args:
        absence_date: A day in the week to freeze; omit to list upcoming weeks
    """
    get_user_id()
    if absence_date is None:
        weeks = upcoming_weeks(utc_now().date())
        return {"weeks": [{"week": w, "label": format_week_label(w)} for w in weeks]}

    frozen = week_id_for(_parse_date(absence_date))
    return {
        "frozen_week": frozen,
        "recovery_options": [
            {"week": w, "label": format_week_label(w)} for w in adjacent_weeks(frozen)
        ],
    }


@mcp.tool()
@reports_errors
def my_absences() -> dict:
    """The current member's planned absences."""
    user_id = get_user_id()
    absences = get_firestore_client().get_absences(user_id)
    return {"absences": [a.model_dump(mode="json") for a in absences]}


# ==================== Justification Tools ====================


def _justification_service() -> JustificationService:
    return JustificationService(get_firestore_client(), get_judge())


@mcp.tool()
@reports_errors
def submit_justification(week: str, excuse: str, photo_base64: str | None = None) -> dict:
    """Ask the AI judge to excuse a missed week.

    Args:
        week: Week id being justified
        excuse: What happened (at least 15 characters)
        photo_base64: Optional evidence photo
    """
    user_id = get_user_id()
    justification = _justification_service().submit(
        user_id, week, excuse, now=utc_now(), photo=_decode_photo(photo_base64)
    )
    return {
        "accepted": justification.ai_verdict,
        "reason": justification.ai_reason,
        "appeal_count": justification.appeal_count,
    }


@mcp.tool()
@reports_errors
def appeal_justification(week: str, excuse: str, photo_base64: str | None = None) -> dict:
    """Edit a rejected justification and send it to the judge again."""
    user_id = get_user_id()
    justification = _justification_service().appeal(
        user_id, week, excuse, now=utc_now(), photo=_decode_photo(photo_base64)
    )
    return {
        "accepted": justification.ai_verdict,
        "reason": justification.ai_reason,
        "appeal_count": justification.appeal_count,
    }


@mcp.tool()
@reports_errors
def recent_justifications(limit: int = 20) -> dict:
    """Latest justifications across the family with the judge's verdicts."""
    get_user_id()
    justifications = get_firestore_client().get_recent_justifications(limit)
    return {
        "justifications": [
            {
                "user_id": j.user_id,
                "week": j.week_id,
                "excuse": j.excuse,
                "accepted": j.ai_verdict,
                "reason": j.ai_reason,
                "appeal_count": j.appeal_count,
            }
            for j in justifications
        ]
    }


# ==================== Flag Tools ====================


@mcp.tool()
@reports_errors
def flag_workout(workout_id: str) -> dict:
    """Flag another member's workout as fake. Counts as your vote."""
    user_id = get_user_id()
    flag = FlagService(get_firestore_client()).flag(workout_id, user_id, now=utc_now())
    return {"flag": flag.model_dump(mode="json")}


@mcp.tool()
@reports_errors
def vote_workout(workout_id: str, choice: str) -> dict:
    """Vote 'legitimate' or 'fake' on a flagged workout."""
    user_id = get_user_id()
    flag = FlagService(get_firestore_client()).vote(workout_id, user_id, choice, now=utc_now())
    result = {"flag": flag.model_dump(mode="json")}
    if flag.resolved:
        result["outcome"] = flag.outcome.value
        result["workout_deleted"] = flag.outcome == VoteChoice.FAKE
    return result


def family_roster() -> list[dict]:
    return [{"id": m.id, "name": m.name, "avatar": m.avatar} for m in FAMILY]

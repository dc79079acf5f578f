"""Core Data Models - Pydantic models for type safety.

All models are value objects with no behavior beyond validation. Stored
documents use the camelCase field names of the Firestore collections;
Python code uses snake_case.
"""

from datetime import date as DateType
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .rules import BASE_FINE, EXERCISE_TYPES, MAX_FINE


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def summary_key(user_id: str, week_id: str) -> str:
    """Composite document id for per-user, per-week records."""
    return f"{user_id}_{week_id}"


class Document(BaseModel):
    """Base for models persisted in the document store."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WeekStatus(str, Enum):
    COMPLETED = "completed"
    MISSED = "missed"
    FROZEN = "frozen"
    JUSTIFIED = "justified"


class VoteChoice(str, Enum):
    LEGITIMATE = "legitimate"
    FAKE = "fake"


class FlagStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class UserProfile(Document):
    """Per-member ledger: wallet, fine level, streaks, lives and shield."""

    id: str
    name: str = ""
    avatar: str = ""
    wallet_balance: int = Field(default=0, ge=0, description="Accumulated fines in CLP")
    extra_lives: int = Field(default=0, ge=0)
    current_fine_level: int = Field(default=BASE_FINE, ge=BASE_FINE, le=MAX_FINE)
    consecutive_successes: int = Field(default=0, ge=0)
    consecutive_misses: int = Field(default=0, ge=0)
    has_shield: bool = False


class Workout(Document):
    """A single logged exercise session."""

    id: Optional[str] = None
    user_id: str = Field(min_length=1)
    workout_date: DateType = Field(alias="date", description="Calendar day of the session")
    week_id: str = Field(min_length=1)
    exercise_type: str
    duration: int = Field(gt=0, description="Duration in minutes")
    description: Optional[str] = None
    photo_url: Optional[str] = Field(default=None, alias="photoURL")
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("exercise_type")
    @classmethod
    def _known_exercise(cls, value: str) -> str:
        if value not in EXERCISE_TYPES:
            raise ValueError(f"exercise_type must be one of {', '.join(EXERCISE_TYPES)}")
        return value


class Absence(Document):
    """A planned absence: one frozen week plus its recovery weeks."""

    id: Optional[str] = None
    user_id: str
    frozen_week_id: str
    recovery_weeks: list[str] = Field(min_length=1, description="Ordered as selected")
    missed_sessions_per_recovery_week: dict[str, int]
    status: str = "active"
    created_at: datetime = Field(default_factory=utc_now)


class Verdict(BaseModel):
    """Classifier judgement on an excuse."""

    valid: bool
    reason: str


class Justification(Document):
    """An excuse for a missed week, adjudicated by the AI judge."""

    id: Optional[str] = None
    user_id: str
    week_id: str
    excuse: str
    evidence_photo_url: Optional[str] = Field(default=None, alias="evidencePhotoURL")
    ai_verdict: bool
    ai_reason: str
    appeal_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def accepted(self) -> bool:
        return self.ai_verdict is True


class WeeklySummary(Document):
    """Immutable settlement record for one member and one week."""

    user_id: str
    week_id: str
    status: WeekStatus
    sessions: int = Field(ge=0)
    total_required: int = Field(ge=0)
    recovery_sessions: int = Field(default=0, ge=0)
    fine_applied: int = Field(default=0, ge=0)
    life_used: bool = False
    life_earned: bool = False
    shield_earned: bool = False
    shield_broken: bool = False
    deficit: int = Field(default=0, ge=0)
    closed_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        return summary_key(self.user_id, self.week_id)


class Flag(Document):
    """A peer dispute over a workout, keyed by the workout id."""

    workout_id: str
    flagger_id: str
    owner_id: str
    votes: dict[str, VoteChoice] = Field(default_factory=dict)
    status: FlagStatus = FlagStatus.OPEN
    outcome: Optional[VoteChoice] = None
    created_at: datetime = Field(default_factory=utc_now)
    resolved_at: Optional[datetime] = None

    @property
    def resolved(self) -> bool:
        return self.status == FlagStatus.RESOLVED


class UserWeekStatus(BaseModel):
    """Live, pre-settlement progress for one member."""

    user_id: str
    week_id: str
    sessions: int
    total_required: int
    regular_sessions: int
    recovery_sessions: int
    bonus_sessions: int
    frozen: bool
    goal_met: bool
    progress: float = Field(ge=0, le=1)
    can_earn_life: bool
    mood: str


class WeekRange(BaseModel):
    """First (Monday) and last (Sunday) day of a week."""

    start: DateType
    end: DateType


class PhotoUpload(BaseModel):
    """Raw photo bytes as received from a client."""

    data: bytes
    filename: str = "photo.jpg"
    content_type: str = "image/jpeg"
    last_modified: Optional[datetime] = None


class PhotoDateCheck(BaseModel):
    """Outcome of comparing a photo's capture date with a claimed date."""

    valid: bool
    message: Optional[str] = None
    photo_date: Optional[DateType] = None
    source: Optional[str] = Field(default=None, description="'exif' or 'file_modified'")


class SettlementReport(BaseModel):
    """Result of closing a week for the whole family."""

    week_id: str
    summaries: list[WeeklySummary] = Field(default_factory=list)
    already_closed: list[str] = Field(default_factory=list)

"""Shared fixtures for shell tests: an in-memory store, judge and uploader."""

import struct
from datetime import datetime, timezone
from typing import Any, Callable

import pytest

from fitfamily.core.errors import ConflictError, ValidationError
from fitfamily.core.models import (
    Absence,
    Flag,
    Justification,
    PhotoUpload,
    UserProfile,
    Verdict,
    VoteChoice,
    WeeklySummary,
    Workout,
    summary_key,
)
from fitfamily.shell.firestore_client import to_document


class InMemoryStore:
    """Dict-backed stand-in for FitFamilyFirestoreClient.

    Documents are stored in their camelCase form, as Firestore would hold them.
    """

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.workouts: dict[str, dict[str, Any]] = {}
        self.summaries: dict[str, dict[str, Any]] = {}
        self.absences: dict[str, dict[str, Any]] = {}
        self.justifications: dict[str, dict[str, Any]] = {}
        self.flags: dict[str, dict[str, Any]] = {}
        self._next_id = 0

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}{self._next_id}"

    # Profiles

    def get_profiles(self) -> list[UserProfile]:
        return [UserProfile.model_validate({**d, "id": k}) for k, d in self.users.items()]

    def get_profile(self, user_id: str) -> UserProfile | None:
        data = self.users.get(user_id)
        return UserProfile.model_validate({**data, "id": user_id}) if data else None

    def save_profile(self, profile: UserProfile) -> None:
        self.users.setdefault(profile.id, {}).update(to_document(profile))

    def ensure_family(self, members) -> list[UserProfile]:
        for member in members:
            if member.id not in self.users:
                self.save_profile(UserProfile(id=member.id, name=member.name, avatar=member.avatar))
        return self.get_profiles()

    def get_user_data(self, user_id: str) -> dict[str, Any] | None:
        data = self.users.get(user_id)
        return dict(data) if data is not None else None

    def set_user_fields(self, user_id: str, fields: dict[str, Any]) -> None:
        self.users.setdefault(user_id, {}).update(fields)

    # Workouts

    def add_workout(self, workout: Workout) -> Workout:
        doc_id = self._new_id("w")
        self.workouts[doc_id] = to_document(workout)
        return workout.model_copy(update={"id": doc_id})

    def get_workout(self, workout_id: str) -> Workout | None:
        data = self.workouts.get(workout_id)
        return Workout.model_validate({**data, "id": workout_id}) if data else None

    def get_workouts_for_week(self, week_id: str) -> list[Workout]:
        return [
            Workout.model_validate({**d, "id": k})
            for k, d in self.workouts.items()
            if d["weekId"] == week_id
        ]

    def get_recent_workouts(self, limit: int = 50) -> list[Workout]:
        workouts = [Workout.model_validate({**d, "id": k}) for k, d in self.workouts.items()]
        return sorted(workouts, key=lambda w: w.created_at, reverse=True)[:limit]

    def get_workouts_by_user(self, user_id: str) -> list[Workout]:
        workouts = [
            Workout.model_validate({**d, "id": k})
            for k, d in self.workouts.items()
            if d["userId"] == user_id
        ]
        return sorted(workouts, key=lambda w: w.workout_date, reverse=True)

    # Summaries

    def get_summaries_for_week(self, week_id: str) -> list[WeeklySummary]:
        return [
            WeeklySummary.model_validate(d) for d in self.summaries.values() if d["weekId"] == week_id
        ]

    def get_user_summaries(self, user_id: str) -> list[WeeklySummary]:
        return [
            WeeklySummary.model_validate(d) for d in self.summaries.values() if d["userId"] == user_id
        ]

    def apply_settlement(
        self,
        user_id: str,
        week_id: str,
        settle: Callable[[UserProfile], tuple[UserProfile, WeeklySummary]],
    ) -> WeeklySummary | None:
        key = summary_key(user_id, week_id)
        if key in self.summaries:
            return None
        profile = self.get_profile(user_id)
        if profile is None:
            raise ValidationError(f"No profile for {user_id}.")
        updated, summary = settle(profile)
        self.save_profile(updated)
        self.summaries[key] = to_document(summary)
        return summary

    # Absences

    def add_absence(self, absence: Absence) -> Absence:
        doc_id = self._new_id("a")
        self.absences[doc_id] = to_document(absence)
        return absence.model_copy(update={"id": doc_id})

    def get_all_absences(self) -> list[Absence]:
        return [Absence.model_validate({**d, "id": k}) for k, d in self.absences.items()]

    def get_absences(self, user_id: str) -> list[Absence]:
        return [a for a in self.get_all_absences() if a.user_id == user_id]

    # Justifications

    def get_justification(self, user_id: str, week_id: str) -> Justification | None:
        key = summary_key(user_id, week_id)
        data = self.justifications.get(key)
        return Justification.model_validate({**data, "id": key}) if data else None

    def get_justifications_for_week(self, week_id: str) -> list[Justification]:
        return [
            Justification.model_validate({**d, "id": k})
            for k, d in self.justifications.items()
            if d["weekId"] == week_id
        ]

    def get_recent_justifications(self, limit: int = 20) -> list[Justification]:
        justifications = [
            Justification.model_validate({**d, "id": k}) for k, d in self.justifications.items()
        ]
        return sorted(justifications, key=lambda j: j.created_at, reverse=True)[:limit]

    def create_justification(self, justification: Justification) -> Justification:
        key = summary_key(justification.user_id, justification.week_id)
        if key in self.justifications:
            raise ConflictError("A justification for this week was submitted already.")
        self.justifications[key] = to_document(justification)
        return justification.model_copy(update={"id": key})

    def update_justification(self, justification: Justification, expected_appeal_count: int) -> None:
        stored = self.justifications.get(justification.id)
        if stored is None or stored["appealCount"] != expected_appeal_count:
            raise ConflictError("This justification changed meanwhile. Reload and try again.")
        self.justifications[justification.id] = to_document(justification)

    # Flags

    def get_flag(self, workout_id: str) -> Flag | None:
        data = self.flags.get(workout_id)
        return Flag.model_validate(data) if data else None

    def create_flag(self, flag: Flag) -> Flag:
        if flag.workout_id in self.flags:
            return self.get_flag(flag.workout_id)
        self.flags[flag.workout_id] = to_document(flag)
        return flag

    def record_vote(self, workout_id: str, apply: Callable[[Flag], Flag]) -> Flag:
        current = self.get_flag(workout_id)
        if current is None:
            raise ValidationError("This workout has not been flagged.")
        updated = apply(current)
        self.flags[workout_id] = to_document(updated)
        if updated.resolved and updated.outcome == VoteChoice.FAKE:
            self.workouts.pop(workout_id, None)
        return updated


class StubJudge:
    """Judge returning a fixed verdict and recording what it was asked."""

    def __init__(self, verdict: Verdict | None = None) -> None:
        self.verdict = verdict or Verdict(valid=False, reason="Not a valid reason.")
        self.calls: list[tuple[str, bytes | None]] = []

    def classify(self, excuse: str, image: bytes | None = None, mime_type: str = "image/jpeg") -> Verdict:
        self.calls.append((excuse, image))
        return self.verdict


class RecordingUploader:
    """Uploader that remembers object paths and returns predictable URLs."""

    def __init__(self) -> None:
        self.paths: list[str] = []

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        self.paths.append(path)
        return f"https://storage.example/{path}"


def jpeg_with_datetime(taken: datetime) -> bytes:
    """Minimal JPEG whose IFD0 DateTime tag holds ``taken``."""
    text = taken.strftime("%Y:%m:%d %H:%M:%S").encode("ascii") + b"\x00"
    tiff = (
        b"II" + struct.pack("<HI", 42, 8)
        + struct.pack("<H", 1)
        + struct.pack("<HHII", 0x0132, 2, len(text), 26)
        + struct.pack("<I", 0)
        + text
    )
    payload = b"Exif\x00\x00" + tiff
    return b"\xff\xd8\xff\xe1" + struct.pack(">H", len(payload) + 2) + payload + b"\xff\xda\x00\x02"


@pytest.fixture
def photo_taken():
    """Factory for uploads carrying an EXIF capture date."""

    def make(taken: datetime, filename: str = "photo.jpg") -> PhotoUpload:
        return PhotoUpload(data=jpeg_with_datetime(taken), filename=filename)

    return make


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def judge():
    return StubJudge()


@pytest.fixture
def uploader():
    return RecordingUploader()


@pytest.fixture
def now():
    return datetime(2025, 6, 16, 9, 0, tzinfo=timezone.utc)

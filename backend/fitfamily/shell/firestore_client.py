"""Firestore Client - Persistence for the family challenge.

This module handles all database I/O. All I/O is contained here; business
logic is in the core module. Failures are logged and raised as StoreError so
callers never mistake a failed read for an empty week.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator, Optional

from google.api_core.exceptions import AlreadyExists
from google.cloud import firestore

from ..core.errors import ConflictError, FitFamilyError, StoreError, ValidationError
from ..core.models import (
    Absence,
    Document,
    Flag,
    Justification,
    UserProfile,
    VoteChoice,
    WeeklySummary,
    Workout,
    summary_key,
)
from ..core.rules import FamilyMember


logger = logging.getLogger(__name__)

USERS = "users"
WORKOUTS = "workouts"
WEEKLY_SUMMARIES = "weekly_summaries"
ABSENCES = "absences"
JUSTIFICATIONS = "justifications"
FLAGS = "flags"

Unsubscribe = Callable[[], None]


@dataclass
class FirestoreConfig:
    """Configuration for Firestore client.

    Attributes:
        project_id: GCP project ID (None for default)
        database: Firestore database name (None for default database)
    """

    project_id: str | None = None
    database: str | None = None


def to_document(model: Document) -> dict[str, Any]:
    """Serialize a model to camelCase Firestore fields.

    Dates and enums become strings; datetimes stay native so Firestore stores
    them as timestamps and orders them chronologically.
    """
    document = model.model_dump(by_alias=True, mode="json", exclude={"id"})
    for field, value in model.model_dump(by_alias=True, exclude={"id"}).items():
        if isinstance(value, datetime):
            document[field] = value
    return document


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except FitFamilyError:
        raise
    except Exception as e:
        logger.error("Failed to %s: %s", action, str(e))
        raise StoreError(f"Could not {action}. Please try again.") from e


class FitFamilyFirestoreClient:
    """Client for persisting the family challenge to Firestore.

    Collections:
        users/{userId}: ledger fields, name, avatar, pinHash
        workouts/{autoId}: { userId, date, weekId, exerciseType, ... }
        weekly_summaries/{userId}_{weekId}: settlement record
        absences/{autoId}: { userId, frozenWeekId, recoveryWeeks, ... }
        justifications/{userId}_{weekId}: excuse and AI verdict
        flags/{workoutId}: { flaggerId, ownerId, votes, status, outcome }
    """

    def __init__(self, config: FirestoreConfig | None = None) -> None:
        """Initialize Firestore client.

        Args:
            config: Firestore configuration
        """
        self.config = config or FirestoreConfig()
        self._client: firestore.Client | None = None

    @property
    def client(self) -> firestore.Client:
        """Lazy initialization of Firestore client."""
        if self._client is None:
            kwargs: dict[str, Any] = {}
            if self.config.project_id:
                kwargs["project"] = self.config.project_id
            if self.config.database:
                kwargs["database"] = self.config.database
            self._client = firestore.Client(**kwargs)
        return self._client

    def _ref(self, collection: str, doc_id: str) -> firestore.DocumentReference:
        return self.client.collection(collection).document(doc_id)

    def _where(self, collection: str, **equals: Any):
        """Collection query with one equality filter per keyword."""
        query = self.client.collection(collection)
        for field, value in equals.items():
            query = query.where(filter=firestore.FieldFilter(field, "==", value))
        return query

    @staticmethod
    def _subscribe(
        query,
        parse: Callable[[Any], Any],
        on_data: Callable[[list], None],
        on_error: Optional[Callable[[Exception], None]],
        label: str,
    ) -> Unsubscribe:
        """Register a snapshot listener and return its disposer.

        Each delivery carries the full current result set, so the latest
        delivery wins; there is no ordering across documents.
        """
        def callback(snapshots, changes, read_time) -> None:
            try:
                on_data([parse(s) for s in snapshots])
            except Exception as e:
                logger.error("%s subscription error: %s", label, str(e))
                if on_error is not None:
                    on_error(e)

        watch = query.on_snapshot(callback)
        return watch.unsubscribe

    # ==================== Profile Operations ====================

    @staticmethod
    def _profile(snap) -> UserProfile:
        return UserProfile.model_validate({**snap.to_dict(), "id": snap.id})

    def get_profiles(self) -> list[UserProfile]:
        logger.debug("Fetching all profiles")
        with _store_errors("load profiles"):
            return [self._profile(s) for s in self.client.collection(USERS).stream()]

    def get_profile(self, user_id: str) -> UserProfile | None:
        """Fetch a member's ledger.

        Args:
            user_id: The member's ID

        Returns:
            UserProfile if found, None otherwise
        """
        logger.debug("Fetching profile for user: %s", user_id)
        with _store_errors("load profile"):
            snap = self._ref(USERS, user_id).get()
            return self._profile(snap) if snap.exists else None

    def save_profile(self, profile: UserProfile) -> None:
        logger.info("Saving profile for user: %s", profile.id)
        with _store_errors("save profile"):
            self._ref(USERS, profile.id).set(to_document(profile), merge=True)

    def ensure_family(self, members: Iterable[FamilyMember]) -> list[UserProfile]:
        """Create missing member profiles and sync names/avatars from the roster.

        Returns:
            All profiles after seeding
        """
        existing = {p.id: p for p in self.get_profiles()}
        for member in members:
            found = existing.get(member.id)
            if found is None:
                logger.info("Seeding profile for user: %s", member.id)
                profile = UserProfile(id=member.id, name=member.name, avatar=member.avatar)
                self.save_profile(profile)
                existing[member.id] = profile
            elif found.name != member.name or found.avatar != member.avatar:
                self.set_user_fields(member.id, {"name": member.name, "avatar": member.avatar})
                existing[member.id] = found.model_copy(
                    update={"name": member.name, "avatar": member.avatar}
                )
        return list(existing.values())

    def get_user_data(self, user_id: str) -> dict[str, Any] | None:
        """Raw user document, including fields outside the ledger model."""
        with _store_errors("load user"):
            snap = self._ref(USERS, user_id).get()
            return snap.to_dict() if snap.exists else None

    def set_user_fields(self, user_id: str, fields: dict[str, Any]) -> None:
        with _store_errors("update user"):
            self._ref(USERS, user_id).set(fields, merge=True)

    def subscribe_profiles(
        self,
        on_data: Callable[[list[UserProfile]], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Unsubscribe:
        return self._subscribe(
            self.client.collection(USERS), self._profile, on_data, on_error, "Profiles"
        )

    # ==================== Workout Operations ====================

    @staticmethod
    def _workout(snap) -> Workout:
        return Workout.model_validate({**snap.to_dict(), "id": snap.id})

    def add_workout(self, workout: Workout) -> Workout:
        """Persist a new workout.

        Returns:
            The workout with its generated ID
        """
        logger.info("Adding workout for %s on %s", workout.user_id, workout.workout_date)
        with _store_errors("save workout"):
            _, ref = self.client.collection(WORKOUTS).add(to_document(workout))
        return workout.model_copy(update={"id": ref.id})

    def get_workout(self, workout_id: str) -> Workout | None:
        with _store_errors("load workout"):
            snap = self._ref(WORKOUTS, workout_id).get()
            return self._workout(snap) if snap.exists else None

    def get_workouts_for_week(self, week_id: str) -> list[Workout]:
        logger.debug("Fetching workouts for week %s", week_id)
        with _store_errors("load workouts"):
            return [self._workout(s) for s in self._where(WORKOUTS, weekId=week_id).stream()]

    def get_workouts_by_user(self, user_id: str) -> list[Workout]:
        """A member's workouts, most recent date first."""
        with _store_errors("load workouts"):
            workouts = [self._workout(s) for s in self._where(WORKOUTS, userId=user_id).stream()]
        return sorted(workouts, key=lambda w: w.workout_date, reverse=True)

    def get_recent_workouts(self, limit: int = 50) -> list[Workout]:
        """Newest workouts across the family for the feed."""
        with _store_errors("load feed"):
            query = (
                self.client.collection(WORKOUTS)
                .order_by("createdAt", direction=firestore.Query.DESCENDING)
                .limit(limit)
            )
            return [self._workout(s) for s in query.stream()]

    def subscribe_workouts_for_week(
        self,
        week_id: str,
        on_data: Callable[[list[Workout]], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Unsubscribe:
        return self._subscribe(
            self._where(WORKOUTS, weekId=week_id), self._workout, on_data, on_error, "Workouts"
        )

    # ==================== Weekly Summary Operations ====================

    @staticmethod
    def _summary(snap) -> WeeklySummary:
        return WeeklySummary.model_validate(snap.to_dict())

    def get_summaries_for_week(self, week_id: str) -> list[WeeklySummary]:
        with _store_errors("load weekly summaries"):
            return [self._summary(s) for s in self._where(WEEKLY_SUMMARIES, weekId=week_id).stream()]

    def get_user_summaries(self, user_id: str) -> list[WeeklySummary]:
        """A member's settlement history, most recent week first."""
        with _store_errors("load history"):
            summaries = [
                self._summary(s) for s in self._where(WEEKLY_SUMMARIES, userId=user_id).stream()
            ]
        return sorted(summaries, key=lambda s: s.week_id, reverse=True)

    def apply_settlement(
        self,
        user_id: str,
        week_id: str,
        settle: Callable[[UserProfile], tuple[UserProfile, WeeklySummary]],
    ) -> WeeklySummary | None:
        """Settle one member's week exactly once.

        Reads the ledger and the summary document inside one transaction.
        If the summary already exists the week is closed for this member and
        nothing is written.

        Args:
            user_id: The member's ID
            week_id: The week being closed
            settle: Pure transition from the stored ledger to (ledger, summary)

        Returns:
            The new summary, or None if the week was already closed
        """
        user_ref = self._ref(USERS, user_id)
        summary_ref = self._ref(WEEKLY_SUMMARIES, summary_key(user_id, week_id))

        @firestore.transactional
        def run(transaction) -> WeeklySummary | None:
            if summary_ref.get(transaction=transaction).exists:
                return None
            user_snap = user_ref.get(transaction=transaction)
            if not user_snap.exists:
                raise ValidationError(f"No profile for {user_id}.")
            profile = self._profile(user_snap)
            updated, summary = settle(profile)
            if updated != profile:
                transaction.set(user_ref, to_document(updated), merge=True)
            transaction.create(summary_ref, to_document(summary))
            return summary

        with _store_errors("close the week"):
            return run(self.client.transaction())

    # ==================== Absence Operations ====================

    @staticmethod
    def _absence(snap) -> Absence:
        return Absence.model_validate({**snap.to_dict(), "id": snap.id})

    def add_absence(self, absence: Absence) -> Absence:
        logger.info("Adding absence for %s freezing %s", absence.user_id, absence.frozen_week_id)
        with _store_errors("save absence"):
            _, ref = self.client.collection(ABSENCES).add(to_document(absence))
        return absence.model_copy(update={"id": ref.id})

    def get_all_absences(self) -> list[Absence]:
        with _store_errors("load absences"):
            return [self._absence(s) for s in self.client.collection(ABSENCES).stream()]

    def get_absences(self, user_id: str) -> list[Absence]:
        with _store_errors("load absences"):
            return [self._absence(s) for s in self._where(ABSENCES, userId=user_id).stream()]

    # ==================== Justification Operations ====================

    @staticmethod
    def _justification(snap) -> Justification:
        return Justification.model_validate({**snap.to_dict(), "id": snap.id})

    def get_justification(self, user_id: str, week_id: str) -> Justification | None:
        """The member's justification for a week, if any."""
        with _store_errors("load justification"):
            docs = list(self._where(JUSTIFICATIONS, userId=user_id, weekId=week_id).limit(1).stream())
        return self._justification(docs[0]) if docs else None

    def get_justifications_for_week(self, week_id: str) -> list[Justification]:
        with _store_errors("load justifications"):
            return [
                self._justification(s) for s in self._where(JUSTIFICATIONS, weekId=week_id).stream()
            ]

    def get_recent_justifications(self, limit: int = 20) -> list[Justification]:
        with _store_errors("load justifications"):
            query = (
                self.client.collection(JUSTIFICATIONS)
                .order_by("createdAt", direction=firestore.Query.DESCENDING)
                .limit(limit)
            )
            return [self._justification(s) for s in query.stream()]

    def create_justification(self, justification: Justification) -> Justification:
        """Store a first justification under its (user, week) document id.

        Raises:
            ConflictError: If one already exists for that user and week
        """
        doc_id = summary_key(justification.user_id, justification.week_id)
        logger.info("Creating justification %s", doc_id)
        with _store_errors("save justification"):
            try:
                self._ref(JUSTIFICATIONS, doc_id).create(to_document(justification))
            except AlreadyExists as e:
                raise ConflictError("A justification for this week was submitted already.") from e
        return justification.model_copy(update={"id": doc_id})

    def update_justification(self, justification: Justification, expected_appeal_count: int) -> None:
        """Overwrite an appealed justification if nobody else appealed first.

        Raises:
            ConflictError: If the stored appeal count moved since it was read
        """
        if justification.id is None:
            raise ValidationError("Cannot update a justification without an id.")
        ref = self._ref(JUSTIFICATIONS, justification.id)

        @firestore.transactional
        def run(transaction) -> None:
            snap = ref.get(transaction=transaction)
            stored = (snap.to_dict() or {}) if snap.exists else None
            if stored is None or stored.get("appealCount", 0) != expected_appeal_count:
                raise ConflictError("This justification changed meanwhile. Reload and try again.")
            transaction.set(ref, to_document(justification))

        logger.info("Updating justification %s (appeal %d)", justification.id, justification.appeal_count)
        with _store_errors("save justification"):
            run(self.client.transaction())

    # ==================== Flag Operations ====================

    @staticmethod
    def _flag(snap) -> Flag:
        return Flag.model_validate(snap.to_dict())

    def get_flag(self, workout_id: str) -> Flag | None:
        with _store_errors("load flag"):
            snap = self._ref(FLAGS, workout_id).get()
            return self._flag(snap) if snap.exists else None

    def create_flag(self, flag: Flag) -> Flag:
        """Create a flag unless the workout is already flagged.

        Returns:
            The new flag, or the existing one if the workout was flagged first
        """
        with _store_errors("save flag"):
            try:
                self._ref(FLAGS, flag.workout_id).create(to_document(flag))
            except AlreadyExists:
                logger.info("Workout %s already flagged", flag.workout_id)
                snap = self._ref(FLAGS, flag.workout_id).get()
                return self._flag(snap)
        logger.info("Workout %s flagged by %s", flag.workout_id, flag.flagger_id)
        return flag

    def record_vote(self, workout_id: str, apply: Callable[[Flag], Flag]) -> Flag:
        """Apply a vote to a flag inside a transaction.

        When the vote resolves the flag as fake, the workout is deleted in the
        same transaction, so resolution happens exactly once.

        Raises:
            ValidationError: If the workout has not been flagged
        """
        flag_ref = self._ref(FLAGS, workout_id)
        workout_ref = self._ref(WORKOUTS, workout_id)

        @firestore.transactional
        def run(transaction) -> Flag:
            snap = flag_ref.get(transaction=transaction)
            if not snap.exists:
                raise ValidationError("This workout has not been flagged.")
            updated = apply(self._flag(snap))
            transaction.set(flag_ref, to_document(updated))
            if updated.resolved and updated.outcome == VoteChoice.FAKE:
                transaction.delete(workout_ref)
            return updated

        with _store_errors("record vote"):
            return run(self.client.transaction())

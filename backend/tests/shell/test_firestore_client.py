"""Tests for the Firestore client with a mocked Firestore SDK."""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock, call, patch

import pytest
from google.api_core.exceptions import AlreadyExists

from fitfamily.core.errors import ConflictError, StoreError, ValidationError
from fitfamily.core.flags import cast_vote
from fitfamily.core.models import (
    Flag,
    FlagStatus,
    Justification,
    UserProfile,
    VoteChoice,
    WeeklySummary,
    WeekStatus,
    Workout,
)
from fitfamily.shell.firestore_client import (
    FirestoreConfig,
    FitFamilyFirestoreClient,
    to_document,
)


def snapshot(doc_id: str, data: dict | None) -> MagicMock:
    snap = MagicMock()
    snap.id = doc_id
    snap.exists = data is not None
    snap.to_dict.return_value = data
    return snap


@pytest.fixture
def mock_firestore():
    """Patch the Firestore SDK used by the client module."""
    with patch("fitfamily.shell.firestore_client.firestore") as mock_fs:
        mock_client = MagicMock()
        mock_fs.Client.return_value = mock_client
        yield mock_fs, mock_client


@pytest.fixture
def store(mock_firestore):
    return FitFamilyFirestoreClient(FirestoreConfig(project_id="demo", database="fitfamily"))


class TestClient:
    """Tests for lazy client creation."""

    def test_config_passed_through(self, store, mock_firestore):
        mock_fs, mock_client = mock_firestore
        assert store.client is mock_client
        assert store.client is mock_client
        mock_fs.Client.assert_called_once_with(project="demo", database="fitfamily")


class TestProfiles:
    """Tests for profile reads."""

    def test_get_profile(self, store, mock_firestore):
        _, mock_client = mock_firestore
        mock_client.collection.return_value.document.return_value.get.return_value = snapshot(
            "user2", {"name": "Javi", "walletBalance": 10000, "currentFineLevel": 20000}
        )

        profile = store.get_profile("user2")

        assert profile.id == "user2"
        assert profile.wallet_balance == 10000
        mock_client.collection.assert_called_with("users")

    def test_get_missing_profile(self, store, mock_firestore):
        _, mock_client = mock_firestore
        mock_client.collection.return_value.document.return_value.get.return_value = snapshot("x", None)
        assert store.get_profile("x") is None

    def test_read_failure_is_store_error(self, store, mock_firestore):
        """A failed read is never mistaken for missing data."""
        _, mock_client = mock_firestore
        mock_client.collection.return_value.document.return_value.get.side_effect = RuntimeError("down")

        with pytest.raises(StoreError):
            store.get_profile("user1")


class TestWorkouts:
    """Tests for workout persistence."""

    def test_add_workout_returns_generated_id(self, store, mock_firestore):
        _, mock_client = mock_firestore
        mock_client.collection.return_value.add.return_value = (None, MagicMock(id="w42"))
        workout = Workout(
            user_id="user1",
            workout_date=date(2025, 6, 10),
            week_id="2025-W24",
            exercise_type="Swimming",
            duration=40,
            photo_url="https://photos/pool.jpg",
        )

        saved = store.add_workout(workout)

        assert saved.id == "w42"
        stored = mock_client.collection.return_value.add.call_args.args[0]
        assert stored["userId"] == "user1"
        assert stored["date"] == "2025-06-10"
        assert stored["photoURL"] == "https://photos/pool.jpg"
        assert "id" not in stored

    def test_timestamps_stored_natively(self):
        """createdAt is a timestamp so feed ordering is chronological."""
        created = datetime(2025, 6, 10, 7, 30, tzinfo=timezone.utc)
        workout = Workout(
            user_id="user1", workout_date=date(2025, 6, 10), week_id="2025-W24",
            exercise_type="Running", duration=30, created_at=created,
        )

        stored = to_document(workout)

        assert stored["createdAt"] == created
        assert isinstance(stored["createdAt"], datetime)
        assert stored["date"] == "2025-06-10"
        assert Workout.model_validate(stored).created_at == created

    def test_week_query_uses_field_filter(self, store, mock_firestore):
        mock_fs, mock_client = mock_firestore
        query = mock_client.collection.return_value.where.return_value
        query.stream.return_value = [
            snapshot("w1", {
                "userId": "user1", "date": "2025-06-10", "weekId": "2025-W24",
                "exerciseType": "Running", "duration": 30,
            })
        ]

        workouts = store.get_workouts_for_week("2025-W24")

        assert [w.id for w in workouts] == ["w1"]
        mock_fs.FieldFilter.assert_called_once_with("weekId", "==", "2025-W24")

    def test_subscription_delivers_and_unsubscribes(self, store, mock_firestore):
        _, mock_client = mock_firestore
        query = mock_client.collection.return_value.where.return_value
        received, errors = [], []

        unsubscribe = store.subscribe_workouts_for_week("2025-W24", received.append, errors.append)
        callback = query.on_snapshot.call_args.args[0]
        callback([snapshot("w1", {
            "userId": "user1", "date": "2025-06-10", "weekId": "2025-W24",
            "exerciseType": "Running", "duration": 30,
        })], [], None)
        callback([snapshot("w2", {"broken": True})], [], None)

        assert [w.id for w in received[0]] == ["w1"]
        assert len(errors) == 1
        assert unsubscribe is query.on_snapshot.return_value.unsubscribe


class TestJustifications:
    """Tests for justification persistence."""

    @pytest.fixture
    def justification(self):
        return Justification(
            user_id="user1", week_id="2025-W24", excuse="Hospitalised with pneumonia",
            ai_verdict=True, ai_reason="Serious illness.",
        )

    def test_create_uses_composite_id(self, store, mock_firestore, justification):
        _, mock_client = mock_firestore

        saved = store.create_justification(justification)

        assert saved.id == "user1_2025-W24"
        mock_client.collection.return_value.document.assert_called_with("user1_2025-W24")

    def test_create_twice_conflicts(self, store, mock_firestore, justification):
        _, mock_client = mock_firestore
        mock_client.collection.return_value.document.return_value.create.side_effect = AlreadyExists("dup")

        with pytest.raises(ConflictError):
            store.create_justification(justification)

    def test_lookup_filters_user_and_week(self, store, mock_firestore, justification):
        mock_fs, mock_client = mock_firestore
        query = mock_client.collection.return_value.where.return_value.where.return_value
        query.limit.return_value.stream.return_value = [
            snapshot("user1_2025-W24", to_document(justification))
        ]

        found = store.get_justification("user1", "2025-W24")

        assert found.id == "user1_2025-W24"
        assert found.accepted
        assert mock_fs.FieldFilter.call_args_list == [
            call("userId", "==", "user1"),
            call("weekId", "==", "2025-W24"),
        ]


class TestFlags:
    """Tests for flag persistence."""

    def test_existing_flag_wins(self, store, mock_firestore):
        _, mock_client = mock_firestore
        earlier = Flag(
            workout_id="w1", flagger_id="user3", owner_id="user1",
            votes={"user3": VoteChoice.FAKE},
        )
        ref = mock_client.collection.return_value.document.return_value
        ref.create.side_effect = AlreadyExists("flagged")
        ref.get.return_value = snapshot("w1", to_document(earlier))

        flag = store.create_flag(Flag(
            workout_id="w1", flagger_id="user2", owner_id="user1",
            votes={"user2": VoteChoice.FAKE},
        ))

        assert flag.flagger_id == "user3"


# ==================== Transactions ====================

NOW = datetime(2025, 6, 16, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def transaction(mock_firestore):
    """Run @firestore.transactional functions directly with a mock transaction."""
    mock_fs, mock_client = mock_firestore
    mock_fs.transactional.side_effect = lambda fn: fn
    return mock_client.transaction.return_value


@pytest.fixture
def doc(mock_firestore):
    """Distinct document references, looked up by collection and id."""
    _, mock_client = mock_firestore
    refs: dict[tuple[str, str], MagicMock] = {}

    def ref(collection: str, doc_id: str) -> MagicMock:
        return refs.setdefault((collection, doc_id), MagicMock(name=f"{collection}/{doc_id}"))

    def collection(name: str) -> MagicMock:
        coll = MagicMock(name=name)
        coll.document.side_effect = lambda doc_id: ref(name, doc_id)
        return coll

    mock_client.collection.side_effect = collection
    return ref


class TestApplySettlement:
    """Tests for the exactly-once settlement transaction."""

    def missed(self, profile: UserProfile) -> tuple[UserProfile, WeeklySummary]:
        summary = WeeklySummary(
            user_id="user1", week_id="2025-W24", status=WeekStatus.MISSED,
            sessions=0, total_required=3, fine_applied=5000,
        )
        return profile.model_copy(update={"wallet_balance": 5000}), summary

    def test_closed_week_writes_nothing(self, store, transaction, doc):
        """An existing summary means the member was settled already."""
        doc("weekly_summaries", "user1_2025-W24").get.return_value = snapshot(
            "user1_2025-W24", {"userId": "user1", "weekId": "2025-W24"}
        )
        settle = MagicMock()

        assert store.apply_settlement("user1", "2025-W24", settle) is None

        settle.assert_not_called()
        transaction.set.assert_not_called()
        transaction.create.assert_not_called()

    def test_open_week_writes_ledger_and_summary(self, store, transaction, doc):
        summary_ref = doc("weekly_summaries", "user1_2025-W24")
        user_ref = doc("users", "user1")
        summary_ref.get.return_value = snapshot("user1_2025-W24", None)
        user_ref.get.return_value = snapshot("user1", {"name": "Jose"})

        summary = store.apply_settlement("user1", "2025-W24", self.missed)

        assert summary.fine_applied == 5000
        summary_ref.get.assert_called_once_with(transaction=transaction)
        transaction.create.assert_called_once_with(summary_ref, to_document(summary))
        ref, data = transaction.set.call_args.args
        assert ref is user_ref
        assert data["walletBalance"] == 5000
        assert transaction.set.call_args.kwargs == {"merge": True}

    def test_missing_profile(self, store, transaction, doc):
        doc("weekly_summaries", "user1_2025-W24").get.return_value = snapshot("x", None)
        doc("users", "user1").get.return_value = snapshot("user1", None)

        with pytest.raises(ValidationError):
            store.apply_settlement("user1", "2025-W24", self.missed)
        transaction.create.assert_not_called()


class TestUpdateJustification:
    """Tests for the appeal compare-and-swap."""

    @pytest.fixture
    def appealed(self):
        return Justification(
            id="user1_2025-W24", user_id="user1", week_id="2025-W24",
            excuse="I had a fever of 39 degrees", ai_verdict=True,
            ai_reason="Illness.", appeal_count=2,
        )

    def test_moved_appeal_count_conflicts(self, store, transaction, doc, appealed):
        """Someone else appealed since the record was read."""
        doc("justifications", "user1_2025-W24").get.return_value = snapshot(
            "user1_2025-W24", {"appealCount": 2}
        )

        with pytest.raises(ConflictError):
            store.update_justification(appealed, expected_appeal_count=1)
        transaction.set.assert_not_called()

    def test_deleted_record_conflicts(self, store, transaction, doc, appealed):
        doc("justifications", "user1_2025-W24").get.return_value = snapshot("user1_2025-W24", None)

        with pytest.raises(ConflictError):
            store.update_justification(appealed, expected_appeal_count=1)

    def test_unchanged_count_is_written(self, store, transaction, doc, appealed):
        ref = doc("justifications", "user1_2025-W24")
        ref.get.return_value = snapshot("user1_2025-W24", {"appealCount": 1})

        store.update_justification(appealed, expected_appeal_count=1)

        transaction.set.assert_called_once_with(ref, to_document(appealed))


class TestRecordVote:
    """Tests for the vote transaction and resolve-and-delete."""

    def flagged(self, doc, votes: dict[str, VoteChoice]) -> None:
        flag = Flag(workout_id="w1", flagger_id="user2", owner_id="user1", votes=votes)
        doc("flags", "w1").get.return_value = snapshot("w1", to_document(flag))

    def test_fake_resolution_deletes_workout(self, store, transaction, doc):
        self.flagged(doc, {"user2": VoteChoice.FAKE, "user3": VoteChoice.FAKE})

        flag = store.record_vote("w1", lambda f: cast_vote(f, "user4", "legitimate", NOW))

        assert flag.status == FlagStatus.RESOLVED
        assert flag.outcome == VoteChoice.FAKE
        transaction.set.assert_called_once_with(doc("flags", "w1"), to_document(flag))
        transaction.delete.assert_called_once_with(doc("workouts", "w1"))

    def test_legitimate_resolution_keeps_workout(self, store, transaction, doc):
        self.flagged(doc, {"user2": VoteChoice.FAKE, "user3": VoteChoice.LEGITIMATE})

        flag = store.record_vote("w1", lambda f: cast_vote(f, "user4", "legitimate", NOW))

        assert flag.outcome == VoteChoice.LEGITIMATE
        transaction.set.assert_called_once()
        transaction.delete.assert_not_called()

    def test_open_vote_keeps_workout(self, store, transaction, doc):
        self.flagged(doc, {"user2": VoteChoice.FAKE})

        flag = store.record_vote("w1", lambda f: cast_vote(f, "user3", "fake", NOW))

        assert not flag.resolved
        assert flag.votes["user3"] == VoteChoice.FAKE
        transaction.delete.assert_not_called()

    def test_unflagged_workout(self, store, transaction, doc):
        doc("flags", "w1").get.return_value = snapshot("w1", None)

        with pytest.raises(ValidationError):
            store.record_vote("w1", lambda f: f)
        transaction.set.assert_not_called()

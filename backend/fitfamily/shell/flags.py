"""Flag Service - Flags suspicious workouts and collects family votes."""

import logging
from datetime import datetime

from ..core.errors import ValidationError
from ..core.flags import cast_vote, open_flag
from ..core.models import Flag, VoteChoice


logger = logging.getLogger(__name__)


class FlagService:
    """Entry points for flagging and voting on workouts."""

    def __init__(self, store) -> None:
        self._store = store

    def flag(self, workout_id: str, flagger_id: str, now: datetime) -> Flag:
        """Flag a workout as fake; the flag counts as the flagger's vote.

        Returns:
            The new flag, or the existing one if the workout is already flagged

        Raises:
            ValidationError: Unknown workout, or the owner flagging themselves
        """
        existing = self._store.get_flag(workout_id)
        if existing is not None:
            if existing.owner_id == flagger_id:
                raise ValidationError("You cannot flag your own workout.")
            return existing

        workout = self._store.get_workout(workout_id)
        if workout is None:
            raise ValidationError("That workout no longer exists.")
        return self._store.create_flag(open_flag(workout, flagger_id, now))

    def vote(self, workout_id: str, voter_id: str, choice: VoteChoice | str, now: datetime) -> Flag:
        """Vote on a flagged workout; the deciding vote resolves it.

        Raises:
            ValidationError: Bad choice, not flagged, or owner/flagger voting
            ConflictError: Voting already closed
        """
        try:
            choice = VoteChoice(choice)
        except ValueError as e:
            raise ValidationError("Vote must be 'legitimate' or 'fake'.") from e

        flag = self._store.record_vote(
            workout_id, lambda current: cast_vote(current, voter_id, choice, now)
        )
        if flag.resolved:
            logger.info("Flag on workout %s resolved as %s", workout_id, flag.outcome.value)
        return flag

"""Flag Voting - Peer disputes over workout photos, resolved by majority.

All functions are pure: same input always produces same output, no side effects.
Raising the flag counts as the flagger's "fake" vote. Once every non-owner
member has voted the flag resolves; ties favour removal.
"""

from datetime import datetime

from .errors import ConflictError, ValidationError
from .models import Flag, FlagStatus, VoteChoice, Workout
from .rules import votes_required


def open_flag(workout: Workout, flagger_id: str, now: datetime) -> Flag:
    """Create a flag on a workout, recording the flagger's fake vote.

    Raises:
        ValidationError: If the owner flags their own workout
    """
    if workout.id is None:
        raise ValidationError("Cannot flag a workout that has not been saved.")
    if flagger_id == workout.user_id:
        raise ValidationError("You cannot flag your own workout.")

    return Flag(
        workout_id=workout.id,
        flagger_id=flagger_id,
        owner_id=workout.user_id,
        votes={flagger_id: VoteChoice.FAKE},
        created_at=now,
    )


def tally(votes: dict[str, VoteChoice]) -> VoteChoice:
    """Majority outcome of a set of votes; a tie counts as fake."""
    fake = sum(1 for choice in votes.values() if choice == VoteChoice.FAKE)
    legitimate = len(votes) - fake
    return VoteChoice.FAKE if fake >= legitimate else VoteChoice.LEGITIMATE


def cast_vote(
    flag: Flag,
    voter_id: str,
    choice: VoteChoice,
    now: datetime,
    required: int | None = None,
) -> Flag:
    """Record a vote and resolve the flag once enough members have voted.

    A member voting again replaces their earlier choice.

    Args:
        flag: The flag as currently stored
        voter_id: The member voting
        choice: "legitimate" or "fake"
        now: Timestamp used if the vote resolves the flag
        required: Distinct voters needed (defaults to the family rule)

    Returns:
        Updated flag, resolved if the threshold was reached

    Raises:
        ConflictError: If the flag is already resolved
        ValidationError: If the owner or the flagger tries to vote
    """
    if flag.resolved:
        raise ConflictError("Voting on this workout has closed.")
    if voter_id == flag.owner_id:
        raise ValidationError("You cannot vote on your own workout.")
    if voter_id == flag.flagger_id:
        raise ValidationError("Your flag already counts as your vote.")

    votes = {**flag.votes, voter_id: VoteChoice(choice)}
    threshold = votes_required() if required is None else required

    if len(votes) < threshold:
        return flag.model_copy(update={"votes": votes})

    return flag.model_copy(update={
        "votes": votes,
        "status": FlagStatus.RESOLVED,
        "outcome": tally(votes),
        "resolved_at": now,
    })

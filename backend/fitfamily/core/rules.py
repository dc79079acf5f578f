"""Game Rules - Constants and small pure helpers for the family challenge.

Every number the settlement, status and voting logic depends on lives here.
"""

from dataclasses import dataclass


WEEKLY_GOAL = 3
BASE_FINE = 5000
MAX_FINE = 40000
EXTRA_LIFE_THRESHOLD = 5
SHIELD_STREAK = 4

MIN_EXCUSE_LENGTH = 15
PIN_LENGTH = 4
PHOTO_DATE_TOLERANCE_DAYS = 1


@dataclass(frozen=True)
class FamilyMember:
    """A fixed member of the family roster."""

    id: str
    name: str
    avatar: str


FAMILY: tuple[FamilyMember, ...] = (
    FamilyMember(id="user1", name="Jose", avatar="/avatars/jose.png"),
    FamilyMember(id="user2", name="Javi", avatar="🧘‍♀️"),
    FamilyMember(id="user3", name="Gonza", avatar="🏃‍♂️"),
    FamilyMember(id="user4", name="Fran", avatar="🚴‍♀️"),
)

EXERCISE_TYPES: tuple[str, ...] = (
    "Running",
    "Walking",
    "Cycling",
    "Weights",
    "Yoga",
    "Swimming",
    "Football",
    "CrossFit",
    "Dance",
    "Other",
)


def family_member(user_id: str) -> FamilyMember | None:
    """Look up a roster member by id."""
    for member in FAMILY:
        if member.id == user_id:
            return member
    return None


def votes_required(family: tuple[FamilyMember, ...] = FAMILY) -> int:
    """Number of distinct voters needed to resolve a flag.

    Everyone except the workout's owner gets a vote, so a family of four
    resolves on the third vote.
    """
    return len(family) - 1


def format_clp(amount: int) -> str:
    """Format an amount as Chilean pesos, e.g. 12500 -> '$12.500'."""
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,}".replace(",", ".")

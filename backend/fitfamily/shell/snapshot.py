"""Week Snapshot - Loads everything one week's views need, with a time ceiling.

Loads run in parallel threads; if they have not all finished within the
timeout the load is abandoned and LoadTimeoutError is raised.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from ..core.errors import LoadTimeoutError
from ..core.models import Absence, Justification, UserProfile, WeeklySummary, Workout
from ..core.rules import FAMILY


logger = logging.getLogger(__name__)

LOAD_TIMEOUT_SECONDS = 15.0


@dataclass
class WeekSnapshot:
    """Point-in-time view of one week for the whole family."""

    week_id: str
    profiles: list[UserProfile] = field(default_factory=list)
    workouts: list[Workout] = field(default_factory=list)
    absences: list[Absence] = field(default_factory=list)
    justifications: list[Justification] = field(default_factory=list)
    summaries: list[WeeklySummary] = field(default_factory=list)


def load_week_snapshot(store, week_id: str, timeout: float = LOAD_TIMEOUT_SECONDS) -> WeekSnapshot:
    """Load profiles, workouts, absences, justifications and summaries for a week.

    Missing family profiles are seeded first.

    Args:
        store: FitFamilyFirestoreClient (or anything with the same methods)
        week_id: The week to load
        timeout: Hard ceiling in seconds for the whole load

    Raises:
        LoadTimeoutError: If loading takes longer than ``timeout``
        StoreError: If any read fails
    """
    logger.debug("Loading snapshot for week %s", week_id)
    loaders = {
        "profiles": lambda: store.ensure_family(FAMILY),
        "workouts": lambda: store.get_workouts_for_week(week_id),
        "absences": store.get_all_absences,
        "justifications": lambda: store.get_justifications_for_week(week_id),
        "summaries": lambda: store.get_summaries_for_week(week_id),
    }

    executor = ThreadPoolExecutor(max_workers=len(loaders))
    try:
        futures = {name: executor.submit(load) for name, load in loaders.items()}
        _, pending = wait(futures.values(), timeout=timeout)
        if pending:
            logger.error("Loading week %s timed out after %.0fs", week_id, timeout)
            raise LoadTimeoutError(
                "Timed out loading data. Check your connection and try again."
            )
        results = {name: future.result() for name, future in futures.items()}
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    return WeekSnapshot(week_id=week_id, **results)

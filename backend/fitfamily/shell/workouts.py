"""Workout Service - Logs sessions after checking the photo's date."""

import logging
from datetime import date, datetime
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ValidationError
from ..core.models import PhotoDateCheck, PhotoUpload, Workout
from ..core.photo_date import validate_photo_date
from ..core.weeks import week_id
from .photos import PhotoUploader, photo_object_path


logger = logging.getLogger(__name__)


class WorkoutService:
    """Entry points for logging and listing workouts."""

    def __init__(self, store, uploader: Optional[PhotoUploader] = None) -> None:
        self._store = store
        self._uploader = uploader

    def log_workout(
        self,
        user_id: str,
        workout_date: date,
        exercise_type: str,
        duration: int,
        now: datetime,
        photo: Optional[PhotoUpload] = None,
        photo_url: Optional[str] = None,
        description: Optional[str] = None,
    ) -> tuple[Workout, Optional[PhotoDateCheck]]:
        """Validate and store a workout.

        The photo is uploaded only after the date check passes, and its URL
        is attached only after the upload succeeds.

        Args:
            user_id: The member logging the session
            workout_date: Day of the session
            exercise_type: One of EXERCISE_TYPES
            duration: Minutes, positive
            now: Current time
            photo: Photo bytes to check and upload
            photo_url: URL of a photo already uploaded by the client
            description: Optional free text

        Returns:
            Tuple of (stored workout, photo date check or None)

        Raises:
            ValidationError: Missing/invalid fields or a photo more than a day
                away from ``workout_date``
        """
        if photo is None and not photo_url:
            raise ValidationError("All fields are required, including the photo.")

        check = None
        if photo is not None:
            check = validate_photo_date(photo, workout_date)
            if not check.valid:
                logger.warning("Workout photo for %s rejected: %s", user_id, check.message)
                raise ValidationError(check.message or "The photo is not from that day.")

        try:
            workout = Workout(
                user_id=user_id,
                workout_date=workout_date,
                week_id=week_id(workout_date),
                exercise_type=exercise_type,
                duration=duration,
                description=description or None,
                photo_url=photo_url,
                created_at=now,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid workout: {e.errors()[0]['msg']}") from e

        if photo is not None and self._uploader is not None:
            path = photo_object_path("workouts", user_id, workout_date.isoformat(), now, photo.filename)
            workout = workout.model_copy(
                update={"photo_url": self._uploader.upload(path, photo.data, photo.content_type)}
            )

        return self._store.add_workout(workout), check

    def feed(self, limit: int = 50) -> list[Workout]:
        """Newest workouts across the family."""
        return self._store.get_recent_workouts(limit)

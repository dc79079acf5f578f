"""Justification Service - Submits excuses to the AI judge and stores verdicts.

Order of operations: validate, classify, upload evidence, persist. A failure
at any step leaves nothing half-written.
"""

import logging
from datetime import datetime
from typing import Optional

from ..core.errors import ValidationError
from ..core.excuses import ensure_appealable, prepare_justification, validate_excuse
from ..core.models import Justification, PhotoUpload
from ..core.photo_date import validate_photo_in_week
from ..core.weeks import parse_week_id
from .judge import GeminiExcuseJudge
from .photos import PhotoUploader, photo_object_path


logger = logging.getLogger(__name__)


class JustificationService:
    """Entry points for submitting and appealing justifications."""

    def __init__(
        self,
        store,
        judge: GeminiExcuseJudge,
        uploader: Optional[PhotoUploader] = None,
    ) -> None:
        self._store = store
        self._judge = judge
        self._uploader = uploader

    def submit(
        self,
        user_id: str,
        week_id: str,
        excuse: str,
        now: datetime,
        photo: Optional[PhotoUpload] = None,
    ) -> Justification:
        """Submit an excuse for a week, or appeal a rejected one.

        Args:
            user_id: The member justifying their week
            week_id: The week being justified
            excuse: Excuse text (at least 15 non-whitespace characters)
            now: Current time
            photo: Optional evidence photo

        Returns:
            The stored justification with the judge's verdict

        Raises:
            ValidationError: Bad excuse, bad week id, or evidence photo dated
                outside the week; raised before the judge is called
            ConflictError: Already accepted, or a concurrent submission won
        """
        text = validate_excuse(excuse)
        parse_week_id(week_id)
        existing = self._store.get_justification(user_id, week_id)
        return self._judge_and_store(existing, user_id, week_id, text, now, photo)

    def appeal(
        self,
        user_id: str,
        week_id: str,
        excuse: str,
        now: datetime,
        photo: Optional[PhotoUpload] = None,
    ) -> Justification:
        """Edit and resubmit a rejected justification.

        Raises:
            ValidationError: If there is nothing to appeal
            ConflictError: If the justification was already accepted
        """
        text = validate_excuse(excuse)
        existing = self._store.get_justification(user_id, week_id)
        if existing is None:
            raise ValidationError("There is no justification to appeal for this week.")
        return self._judge_and_store(existing, user_id, week_id, text, now, photo)

    def _judge_and_store(
        self,
        existing: Optional[Justification],
        user_id: str,
        week_id: str,
        excuse: str,
        now: datetime,
        photo: Optional[PhotoUpload],
    ) -> Justification:
        ensure_appealable(existing)

        if photo is not None:
            check = validate_photo_in_week(photo, week_id)
            if not check.valid:
                logger.warning("Evidence photo for %s rejected: %s", user_id, check.message)
                raise ValidationError(check.message or "The photo is not from this week.")

        verdict = self._judge.classify(
            excuse,
            image=photo.data if photo else None,
            mime_type=photo.content_type if photo else "image/jpeg",
        )

        photo_url = None
        if photo is not None and self._uploader is not None:
            path = photo_object_path("justifications", user_id, week_id, now, photo.filename)
            photo_url = self._uploader.upload(path, photo.data, photo.content_type)

        justification = prepare_justification(
            existing, user_id, week_id, excuse, verdict, photo_url, now
        )
        if existing is None:
            justification = self._store.create_justification(justification)
        else:
            self._store.update_justification(justification, expected_appeal_count=existing.appeal_count)

        logger.info(
            "Justification for %s in %s %s (appeal %d)",
            user_id,
            week_id,
            "accepted" if justification.accepted else "rejected",
            justification.appeal_count,
        )
        return justification

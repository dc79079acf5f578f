"""Excuse Adjudication - Validation, judge prompt and verdict handling.

All functions are pure: same input always produces same output, no side effects.
The classifier call itself lives in the shell.
"""

import json
import re
from datetime import datetime
from typing import Optional

from .errors import ConflictError, ValidationError
from .models import Justification, Verdict
from .rules import BASE_FINE, MAX_FINE, MIN_EXCUSE_LENGTH, WEEKLY_GOAL


JUDGE_SYSTEM_PROMPT = f"""You are the strict but fair judge of the "FitFamily" fitness challenge.

CONTEXT:
- 4 family members must complete {WEEKLY_GOAL} exercise sessions per week
- Missing the goal costs a fine in Chilean pesos (from {BASE_FINE} up to {MAX_FINE} CLP)
- FORESEEABLE absences (trips, holidays) are handled by freezing the week in advance
- Justifications are ONLY for the UNFORESEEN, things that could not be planned

ACCEPT:
- Sudden illness (flu, COVID, infection), ideally with a medical certificate or photo
- An injury that prevents exercise, with evidence (photo, certificate)
- A serious family emergency (hospitalisation, accident)
- Natural disaster or force majeure

REJECT:
- "I had no time" / "I was busy": there is always 30 minutes for exercise
- Laziness, tiredness, lack of motivation: exactly what the challenge fights
- A planned trip: that should have been frozen in advance
- Weather: you can exercise indoors
- Vague excuses without concrete evidence
- Too much work: a short workout is always possible
- Anything that WAS foreseeable and could have been planned as a frozen week

BE STRICT. The point of the challenge is that there are NO easy excuses. Only
situations genuinely outside the person's control qualify.

If the user mentions evidence (certificate, photo) but does not attach it, ask for it.
If an image is attached, evaluate it as evidence."""

RESPONSE_INSTRUCTIONS = (
    'Respond ONLY with valid JSON (no markdown, no backticks):\n'
    '{"valid": true/false, "reason": "short explanation, at most 2 sentences"}'
)

UNPARSEABLE_REASON = "Could not interpret the AI judge's response."
MISSING_REASON = "No explanation given."

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def validate_excuse(text: Optional[str]) -> str:
    """Check an excuse is detailed enough to send to the judge.

    Returns:
        The excuse with surrounding whitespace removed

    Raises:
        ValidationError: If the excuse is empty or has fewer than
            MIN_EXCUSE_LENGTH non-whitespace characters
    """
    excuse = (text or "").strip()
    if not excuse:
        raise ValidationError("Write your justification.")
    if len("".join(excuse.split())) < MIN_EXCUSE_LENGTH:
        raise ValidationError(
            f"The justification needs more detail (at least {MIN_EXCUSE_LENGTH} characters)."
        )
    return excuse


def build_judge_prompt(excuse: str, has_photo: bool = False) -> str:
    """User-turn text sent to the classifier alongside the system rules."""
    prompt = f'\nUSER JUSTIFICATION:\n"{excuse}"\n\n{RESPONSE_INSTRUCTIONS}'
    if has_photo:
        prompt += "\n\n(The user attached an image as evidence. Evaluate it.)"
    return prompt


def parse_verdict(raw: str) -> Verdict:
    """Extract the verdict JSON from a classifier reply.

    Tolerates markdown fences or chatter around the JSON object. Anything
    that cannot be read as an object is a rejection, never an approval.
    """
    match = _JSON_OBJECT.search(raw or "")
    if match is None:
        return Verdict(valid=False, reason=UNPARSEABLE_REASON)
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError:
        return Verdict(valid=False, reason=UNPARSEABLE_REASON)
    if not isinstance(payload, dict):
        return Verdict(valid=False, reason=UNPARSEABLE_REASON)

    return Verdict(
        valid=payload.get("valid") is True,
        reason=str(payload.get("reason") or MISSING_REASON),
    )


def ensure_appealable(existing: Optional[Justification]) -> None:
    """Raise ConflictError if the week's justification was already accepted."""
    if existing is not None and existing.accepted:
        raise ConflictError("This week's justification was already accepted.")


def prepare_justification(
    existing: Optional[Justification],
    user_id: str,
    week_id: str,
    excuse: str,
    verdict: Verdict,
    evidence_photo_url: Optional[str],
    now: datetime,
) -> Justification:
    """Apply a verdict to the (user, week) justification record.

    A first submission creates a record with ``appeal_count`` 0. A later
    submission is an appeal: it is only allowed while the stored verdict is
    a rejection, edits the same record and increments ``appeal_count``.

    Raises:
        ConflictError: If the existing justification was already accepted
    """
    if existing is None:
        return Justification(
            id=None,
            user_id=user_id,
            week_id=week_id,
            excuse=excuse,
            evidence_photo_url=evidence_photo_url,
            ai_verdict=verdict.valid,
            ai_reason=verdict.reason,
            appeal_count=0,
            created_at=now,
            updated_at=now,
        )

    ensure_appealable(existing)
    return existing.model_copy(update={
        "excuse": excuse,
        "evidence_photo_url": evidence_photo_url or existing.evidence_photo_url,
        "ai_verdict": verdict.valid,
        "ai_reason": verdict.reason,
        "appeal_count": existing.appeal_count + 1,
        "updated_at": now,
    })

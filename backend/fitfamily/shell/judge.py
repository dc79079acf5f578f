"""AI Judge - Gemini classifier for excuses, failing closed.

Any failure (missing key, HTTP error, timeout, malformed reply) yields a
rejection with a system reason. The judge never approves by default.
"""

import base64
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

import requests

from ..core.excuses import JUDGE_SYSTEM_PROMPT, build_judge_prompt, parse_verdict
from ..core.models import Verdict


logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

NOT_CONFIGURED_REASON = "AI judge is not configured. Set GEMINI_API_KEY."
UNAVAILABLE_REASON = "Error evaluating the justification. Please try again."


@dataclass
class JudgeConfig:
    """Configuration for the Gemini judge.

    Attributes:
        api_key: Gemini API key (empty disables the judge, which then rejects)
        model: Gemini model name
        temperature: Sampling temperature, kept low for consistent verdicts
        max_output_tokens: Reply size limit
        timeout: HTTP timeout in seconds
    """

    api_key: str = field(default_factory=lambda: os.environ.get("GEMINI_API_KEY", ""))
    model: str = field(default_factory=lambda: os.environ.get("GEMINI_MODEL", "gemini-2.0-flash"))
    temperature: float = 0.1
    max_output_tokens: int = 200
    timeout: float = 30.0


class GeminiExcuseJudge:
    """Excuse classifier backed by the Gemini generateContent REST API."""

    def __init__(self, config: JudgeConfig | None = None, session: requests.Session | None = None) -> None:
        self.config = config or JudgeConfig()
        self._session = session or requests.Session()

    def _payload(self, excuse: str, image: Optional[bytes], mime_type: str) -> dict:
        parts: list[dict] = [
            {"text": JUDGE_SYSTEM_PROMPT},
            {"text": build_judge_prompt(excuse, has_photo=image is not None)},
        ]
        if image is not None:
            parts.append({
                "inlineData": {
                    "mimeType": mime_type,
                    "data": base64.b64encode(image).decode("ascii"),
                }
            })
        return {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_output_tokens,
            },
        }

    def classify(self, excuse: str, image: Optional[bytes] = None, mime_type: str = "image/jpeg") -> Verdict:
        """Ask the judge whether an excuse is acceptable.

        Args:
            excuse: Validated excuse text
            image: Optional evidence photo bytes, sent inline
            mime_type: MIME type of the evidence photo

        Returns:
            Verdict; a rejection on any failure
        """
        if not self.config.api_key:
            logger.warning("Gemini API key missing, rejecting excuse")
            return Verdict(valid=False, reason=NOT_CONFIGURED_REASON)

        try:
            response = self._session.post(
                GEMINI_URL.format(model=self.config.model),
                params={"key": self.config.api_key},
                json=self._payload(excuse, image, mime_type),
                timeout=self.config.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("AI judge request failed: %s", str(e))
            return Verdict(valid=False, reason=UNAVAILABLE_REASON)

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            logger.error("AI judge returned no candidate text")
            text = ""

        verdict = parse_verdict(text)
        logger.info("AI judge verdict: %s", "accepted" if verdict.valid else "rejected")
        return verdict

"""Authentication - PIN login for family members.

The PIN is a convenience gate for a shared family app, not a security
boundary. Only a salted hash of the PIN is stored, never the plaintext.
"""

import hashlib
import hmac
import logging

from ..core.errors import ValidationError
from ..core.rules import PIN_LENGTH, family_member


logger = logging.getLogger(__name__)

PIN_HASH_FIELD = "pinHash"


def hash_pin(user_id: str, pin: str) -> str:
    """Hash a PIN salted with the member's id.

    Args:
        user_id: The member's ID
        pin: The plaintext PIN

    Returns:
        64-character hex digest
    """
    return hashlib.sha256(f"{user_id}:{pin}".encode()).hexdigest()


def validate_pin_format(pin: str) -> bool:
    """Check a PIN is exactly PIN_LENGTH digits."""
    if not pin:
        return False
    return len(pin) == PIN_LENGTH and pin.isdigit()


def parse_bearer_token(token: str) -> tuple[str, str] | None:
    """Split a '<userId>:<pin>' bearer token."""
    user_id, sep, pin = (token or "").partition(":")
    if not sep or not user_id or not pin:
        return None
    return user_id, pin


class PinAuthClient:
    """Checks and sets member PINs against the user documents."""

    def __init__(self, store) -> None:
        """Initialize auth client.

        Args:
            store: FitFamilyFirestoreClient instance
        """
        self._store = store

    def has_pin(self, user_id: str) -> bool:
        data = self._store.get_user_data(user_id) or {}
        return bool(data.get(PIN_HASH_FIELD))

    def login(self, user_id: str, pin: str) -> str:
        """Log a member in, setting their PIN on first use.

        Args:
            user_id: The member's ID
            pin: The PIN entered

        Returns:
            The member's ID

        Raises:
            ValidationError: Unknown member, malformed PIN, or wrong PIN
        """
        if family_member(user_id) is None:
            raise ValidationError("Unknown family member.")
        if not validate_pin_format(pin):
            raise ValidationError(f"The PIN must have {PIN_LENGTH} digits.")

        hashed = hash_pin(user_id, pin)
        stored = (self._store.get_user_data(user_id) or {}).get(PIN_HASH_FIELD)

        if stored is None:
            logger.info("Setting first PIN for user: %s", user_id)
            self._store.set_user_fields(user_id, {PIN_HASH_FIELD: hashed})
            return user_id

        if not hmac.compare_digest(stored, hashed):
            logger.warning("Wrong PIN for user: %s", user_id)
            raise ValidationError("Wrong PIN.")

        logger.debug("PIN validated for user: %s", user_id)
        return user_id

    def validate_token(self, token: str) -> str | None:
        """Return the member ID for a valid '<userId>:<pin>' token, else None."""
        parsed = parse_bearer_token(token)
        if parsed is None:
            return None
        user_id, pin = parsed
        if family_member(user_id) is None or not validate_pin_format(pin):
            return None
        stored = (self._store.get_user_data(user_id) or {}).get(PIN_HASH_FIELD)
        if stored is None or not hmac.compare_digest(stored, hash_pin(user_id, pin)):
            return None
        return user_id

"""Domain Errors - Failures surfaced to callers as descriptive messages.

Each error carries a user-facing ``detail``. The shell converts them into
error payloads at the tool/route boundary.
"""


class FitFamilyError(Exception):
    """Base class for all domain-level failures."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class ValidationError(FitFamilyError):
    """Malformed input, rejected before any external call or write."""


class ConflictError(FitFamilyError):
    """The operation raced with, or repeats, an earlier one."""


class StoreError(FitFamilyError):
    """The document store failed to read or write."""


class LoadTimeoutError(FitFamilyError):
    """Initial data load exceeded its time ceiling."""

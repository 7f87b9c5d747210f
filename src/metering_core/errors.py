"""
Error taxonomy for metering_core.

Every public operation either completes or raises one of these. Callers map
them onto transport status codes:

- ValidationError: bad input, fixable by the caller (400)
- NotFoundError: referenced account does not exist (404)
- DataIntegrityError: stored entitlement/usage data is malformed (500)
- StoreError: database failure or timeout (503)
"""

from typing import Any, Dict, Optional


class MeteringError(Exception):
    """Base class for all metering_core errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(MeteringError):
    """Missing/empty argument or out-of-range value."""


class NotFoundError(MeteringError):
    """Referenced account does not exist."""


class DataIntegrityError(MeteringError):
    """Stored data is present but malformed."""


class StoreError(MeteringError):
    """Underlying data store failed (including timeouts)."""


def require_account_id(account_id: Any) -> str:
    """Validate and return a non-empty account identifier."""
    if not isinstance(account_id, str) or not account_id.strip():
        raise ValidationError("Account ID is required")
    return account_id

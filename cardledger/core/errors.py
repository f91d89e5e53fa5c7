"""
Error taxonomy for the catalog authority.

Every core operation either completes or raises one of these.
Callers decide retry policy:

- ValidationError: malformed input, never retried automatically
- RateLimited: back off and resubmit later
- Forbidden: role insufficient, never retried
- NotFound: referenced entity missing
- Conflict: requested version absent
"""

from typing import Optional


class CardLedgerError(Exception):
    """Base exception for authority errors."""
    code = "error"


class ValidationError(CardLedgerError):
    """Raised when input fails validation."""
    code = "validation"


class RateLimited(CardLedgerError):
    """Raised when a device exceeds its write budget."""
    code = "rate_limited"

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class Forbidden(CardLedgerError):
    """Raised when the principal's role is below the operation minimum."""
    code = "forbidden"


class NotFound(CardLedgerError):
    """Raised when a referenced record, claim, proposal or draft is missing."""
    code = "not_found"


class Conflict(CardLedgerError):
    """Raised when a rollback target version does not exist."""
    code = "conflict"

"""Exception hierarchy for the loan engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from loan_tracker.duplicates import DuplicateMatch


class LoanTrackerError(Exception):
    """Base exception for all loan engine errors."""


class LoanValidationError(LoanTrackerError):
    """Raised when loan terms are malformed or out of range."""


class LoanNotFoundError(LoanTrackerError):
    """Raised when a loan does not exist or belongs to another user."""


class DuplicateLoanError(LoanTrackerError):
    """Raised when a candidate loan matches one of the user's existing loans."""

    def __init__(self, message: str, match: DuplicateMatch):
        super().__init__(message)
        self.message = message
        self.match = match
        # Read eagerly; the session may be closed by the time this is rendered.
        self.reason = match.reason.value
        self.existing_loan_id = match.loan.id


class PersistenceError(LoanTrackerError):
    """Raised when a database read or write fails."""

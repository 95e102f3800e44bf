"""
Ballot-specific exception hierarchy for roundvote.

Every public ballot operation is all-or-nothing: raising any of these
exceptions means the operation was rejected and no state was changed.
Each exception carries a stable ``code`` used by the HTTP layer and logs.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class BallotError(Exception):
    """Base exception for all ballot-related errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
        code: Stable error kind identifier
    """

    code = "BallotError"
    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Authorization Errors ====================


class UnauthorizedError(BallotError):
    """Raised when the caller lacks the role an operation requires."""
    code = "Unauthorized"


# ==================== Ballot State Errors ====================


class BallotStateError(BallotError):
    """Raised when an operation conflicts with the current ballot state."""
    pass


class AlreadyVotedError(BallotStateError):
    """Raised when a voter who already voted or delegated acts again in a round."""
    code = "AlreadyVoted"


class AlreadyHasRightError(BallotStateError):
    """Raised when granting rights to a voter whose weight is already non-zero."""
    code = "AlreadyHasRight"


class NoRightToVoteError(BallotStateError):
    """Raised when a voter with zero weight tries to vote."""
    code = "NoRightToVote"


class RoundNotReadyError(BallotStateError):
    """Raised when a round is opened before the previous winner is confirmed."""
    code = "RoundNotReady"


class WinnerAlreadyConfirmedError(BallotStateError):
    """Raised when confirming a round whose winner is already recorded."""
    code = "WinnerAlreadyConfirmed"


class RoundClosedError(BallotStateError):
    """Raised when ballots are cast on a confirmed round that is frozen."""
    code = "RoundClosed"


# ==================== Delegation Errors ====================


class DelegationError(BallotError):
    """Raised when a delegation request is rejected."""
    pass


class SelfDelegationError(DelegationError):
    """Raised when a voter delegates to themselves."""
    code = "SelfDelegation"


class DelegationCycleError(DelegationError):
    """Raised when a delegation would route weight back to the delegator."""

    code = "DelegationCycle"

    def __init__(
        self,
        message: str,
        chain: Optional[list[str]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.chain = list(chain or [])


# ==================== Validation Errors ====================


class BallotValidationError(BallotError):
    """Raised when operation input fails validation."""
    pass


class InvalidProposalIndexError(BallotValidationError):
    """Raised when a proposal index is outside the round's proposal list.

    Also raised by read-only queries against a round with no proposals.
    """
    code = "InvalidProposalIndex"


class InvalidProposalNameError(BallotValidationError):
    """Raised when proposal names are empty, too long, or of the wrong type."""
    code = "InvalidProposalName"


class InvalidAddressError(BallotValidationError):
    """Raised when an identity is empty or the zero address."""
    code = "InvalidAddress"


# ==================== Storage & Configuration Errors ====================


class BallotStorageError(BallotError):
    """Raised when ballot state cannot be persisted or loaded."""
    code = "StorageError"
    recoverable = True


class ConfigurationError(BallotError):
    """Raised when ballot configuration is invalid."""
    code = "ConfigurationError"


# ==================== Utility Functions ====================


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, BallotError):
        context["code"] = exc.code
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    if isinstance(exc, DelegationCycleError) and exc.chain:
        context["chain"] = exc.chain

    return context

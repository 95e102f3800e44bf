"""
Unit tests for ballot error kinds and log context extraction
"""

import pytest

from roundvote.core.ballot_exceptions import (
    AlreadyHasRightError,
    AlreadyVotedError,
    BallotError,
    BallotStateError,
    BallotStorageError,
    BallotValidationError,
    DelegationCycleError,
    DelegationError,
    InvalidProposalIndexError,
    NoRightToVoteError,
    RoundNotReadyError,
    SelfDelegationError,
    UnauthorizedError,
    WinnerAlreadyConfirmedError,
    get_error_context,
)


@pytest.mark.parametrize(
    "exc_cls, code",
    [
        (UnauthorizedError, "Unauthorized"),
        (AlreadyVotedError, "AlreadyVoted"),
        (AlreadyHasRightError, "AlreadyHasRight"),
        (SelfDelegationError, "SelfDelegation"),
        (DelegationCycleError, "DelegationCycle"),
        (NoRightToVoteError, "NoRightToVote"),
        (InvalidProposalIndexError, "InvalidProposalIndex"),
        (RoundNotReadyError, "RoundNotReady"),
        (WinnerAlreadyConfirmedError, "WinnerAlreadyConfirmed"),
    ],
)
def test_error_codes(exc_cls, code):
    error = exc_cls("boom")
    assert error.code == code
    assert isinstance(error, BallotError)
    assert error.recoverable is False


def test_hierarchy():
    assert issubclass(AlreadyVotedError, BallotStateError)
    assert issubclass(DelegationCycleError, DelegationError)
    assert issubclass(InvalidProposalIndexError, BallotValidationError)


def test_storage_errors_are_recoverable_by_default():
    assert BallotStorageError("disk").recoverable is True
    assert BallotStorageError("bad address", recoverable=False).recoverable is False


def test_details_default_to_empty():
    assert AlreadyVotedError("x").details == {}


class TestGetErrorContext:
    def test_ballot_error(self):
        context = get_error_context(NoRightToVoteError("no weight", details={"round": 2}))
        assert context == {
            "error_type": "NoRightToVoteError",
            "error_message": "no weight",
            "code": "NoRightToVote",
            "recoverable": False,
            "details": {"round": 2},
        }

    def test_cycle_includes_chain(self):
        context = get_error_context(DelegationCycleError("loop", chain=["a", "b"]))
        assert context["chain"] == ["a", "b"]

    def test_plain_exception(self):
        assert get_error_context(ValueError("bad")) == {
            "error_type": "ValueError",
            "error_message": "bad",
        }

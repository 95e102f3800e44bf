"""
Tally Engine - direct votes, proposal counts and the leading proposal.
"""

from __future__ import annotations

import logging

from roundvote.core.ballot_exceptions import (
    AlreadyVotedError,
    InvalidProposalIndexError,
    NoRightToVoteError,
)
from roundvote.governance.access_control import CallContext
from roundvote.governance.round_registry import RoundRegistry
from roundvote.governance.voter_ledger import VoterLedger

logger = logging.getLogger(__name__)


class TallyEngine:
    def __init__(self, registry: RoundRegistry, ledger: VoterLedger) -> None:
        self.registry = registry
        self.ledger = ledger

    def vote(self, ctx: CallContext, round_id: int, proposal_index: int) -> int:
        """
        Cast the caller's whole weight for ``proposal_index``.

        Args:
            ctx: Call context; the caller is the voter
            round_id: Round to vote in
            proposal_index: Index into the round's proposal list

        Returns:
            The proposal's new vote count

        Raises:
            AlreadyVotedError: If the caller already voted or delegated
            NoRightToVoteError: If the caller's weight is zero
            InvalidProposalIndexError: If the index is not a valid proposal
        """
        voter = ctx.caller
        record = self.ledger.get(round_id, voter)
        if record.voted:
            raise AlreadyVotedError(
                "Ballot: voter has already voted",
                details={"round": round_id, "voter": voter},
            )
        if record.weight == 0:
            raise NoRightToVoteError(
                "Ballot: voter has no right to vote",
                details={"round": round_id, "voter": voter},
            )
        self._check_index(round_id, proposal_index)

        self.ledger.mark_voted(round_id, voter, proposal_index)
        new_count = self.registry.add_votes(round_id, proposal_index, record.weight)

        logger.info(
            "Ballot vote cast",
            extra={
                "event": "ballot.vote",
                "round": round_id,
                "voter": voter[:10],
                "proposal": proposal_index,
                "weight": record.weight,
                "vote_count": new_count,
            },
        )
        return new_count

    def credit(self, round_id: int, proposal_index: int, amount: int) -> int:
        """Add delegated weight to a proposal already chosen by the terminal voter."""
        return self.registry.add_votes(round_id, proposal_index, amount)

    def winning_proposal(self, round_id: int) -> int:
        """
        Index of the proposal with the most votes.

        Ties resolve to the lowest index; with no votes at all, index 0 wins.
        """
        proposals = self.registry.proposals(round_id)
        if not proposals:
            raise InvalidProposalIndexError(
                f"Ballot: round {round_id} has no proposals",
                details={"round": round_id},
            )
        winning_vote_count = 0
        winning_index = 0
        for index, proposal in enumerate(proposals):
            if proposal.vote_count > winning_vote_count:
                winning_vote_count = proposal.vote_count
                winning_index = index
        return winning_index

    def winner_name(self, round_id: int) -> bytes:
        return self.registry.proposals(round_id)[self.winning_proposal(round_id)].name

    def total_votes(self, round_id: int) -> int:
        return sum(p.vote_count for p in self.registry.proposals(round_id))

    def results(self, round_id: int) -> list[dict]:
        return [
            {"index": index, "name": p.label, "vote_count": p.vote_count}
            for index, p in enumerate(self.registry.proposals(round_id))
        ]

    def _check_index(self, round_id: int, proposal_index: int) -> None:
        count = self.registry.proposal_count(round_id)
        if (
            isinstance(proposal_index, bool)
            or not isinstance(proposal_index, int)
            or not 0 <= proposal_index < count
        ):
            raise InvalidProposalIndexError(
                f"Ballot: proposal {proposal_index!r} does not exist in round {round_id}",
                details={"round": round_id, "index": repr(proposal_index), "proposals": count},
            )

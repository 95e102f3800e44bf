"""
Delegation Resolver - routes a delegator's weight to the end of a delegation chain.

A delegation is irrevocable for the round. The delegator is marked as voted and
its weight moves to the terminal delegate: straight into the terminal's chosen
proposal if it already voted, otherwise onto the terminal's own weight.
"""

from __future__ import annotations

import logging

from roundvote.core.ballot_exceptions import (
    AlreadyVotedError,
    DelegationCycleError,
    SelfDelegationError,
)
from roundvote.governance.access_control import CallContext, normalize_address
from roundvote.governance.tally import TallyEngine
from roundvote.governance.voter_ledger import VoterLedger

logger = logging.getLogger(__name__)


class DelegationResolver:
    def __init__(self, ledger: VoterLedger, tally: TallyEngine) -> None:
        self.ledger = ledger
        self.tally = tally

    def _walk(self, round_id: int, start: str, delegator: str | None = None) -> tuple[str, list[str]]:
        """
        Follow delegate links from ``start`` to the end of the chain.

        The walk never takes more steps than there are records in the round, so
        it terminates even on corrupted state.

        Returns:
            (terminal identity, visited identities in order)

        Raises:
            DelegationCycleError: If ``delegator`` is reached or the bound is exceeded
        """
        max_depth = self.ledger.size(round_id) + 1
        current = start
        visited = [current]

        while True:
            record = self.ledger.raw(round_id, current)
            if record is None or record.delegate is None:
                return current, visited
            if len(visited) > max_depth:
                raise DelegationCycleError(
                    "Ballot: delegation chain does not terminate",
                    chain=visited,
                    details={"round": round_id, "max_depth": max_depth},
                )
            current = record.delegate
            visited.append(current)
            if current == delegator:
                raise DelegationCycleError(
                    "Ballot: found loop in delegation",
                    chain=visited,
                    details={"round": round_id},
                )

    def resolve_terminal(self, round_id: int, identity: str) -> str:
        """Identity whose ballot ultimately carries ``identity``'s weight."""
        terminal, _ = self._walk(round_id, normalize_address(identity, "voter"))
        return terminal

    def delegate(self, ctx: CallContext, round_id: int, to: str) -> str:
        """
        Delegate the caller's weight to ``to`` for the rest of the round.

        Args:
            ctx: Call context; the caller is the delegator
            round_id: Round to delegate in
            to: Identity to delegate to

        Returns:
            The terminal delegate that received the weight

        Raises:
            AlreadyVotedError: If the caller already voted or delegated
            SelfDelegationError: If ``to`` is the caller
            DelegationCycleError: If the chain starting at ``to`` leads back to the caller
        """
        delegator = ctx.caller
        target = normalize_address(to, "delegate")

        sender = self.ledger.get(round_id, delegator)
        if sender.voted:
            raise AlreadyVotedError(
                "Ballot: voter has already voted",
                details={"round": round_id, "voter": delegator},
            )
        if target == delegator:
            raise SelfDelegationError(
                "Ballot: self-delegation is disallowed",
                details={"round": round_id, "voter": delegator},
            )

        terminal, chain = self._walk(round_id, target, delegator=delegator)
        terminal_record = self.ledger.get(round_id, terminal)

        self.ledger.mark_delegated(round_id, delegator, terminal)
        if terminal_record.directly_voted:
            # The delegate already voted, so the weight is tallied at once.
            self.tally.credit(round_id, terminal_record.vote, sender.weight)
        else:
            self.ledger.add_weight(round_id, terminal, sender.weight)

        logger.info(
            "Ballot vote delegated",
            extra={
                "event": "ballot.delegate",
                "round": round_id,
                "from": delegator[:10],
                "to": target[:10],
                "terminal": terminal[:10],
                "chain_length": len(chain),
                "weight": sender.weight,
                "tallied": terminal_record.directly_voted,
            },
        )
        return terminal

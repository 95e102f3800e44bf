"""
Round Lifecycle Controller - winner confirmation and the gate on the next round.

Per round: PENDING (not opened) -> OPEN (proposals exist, ballots accepted)
-> CONFIRMED (winner recorded). Round r + 1 can be opened only from CONFIRMED.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterable

from roundvote.core.ballot_exceptions import (
    RoundClosedError,
    RoundNotReadyError,
    WinnerAlreadyConfirmedError,
)
from roundvote.governance.access_control import AccessControl, CallContext
from roundvote.governance.round_registry import RoundRegistry
from roundvote.governance.tally import TallyEngine
from roundvote.governance.voter_ledger import VoterLedger

logger = logging.getLogger(__name__)


class RoundState(Enum):
    PENDING = "pending"
    OPEN = "open"
    CONFIRMED = "confirmed"


class RoundLifecycleController:
    def __init__(
        self,
        registry: RoundRegistry,
        ledger: VoterLedger,
        tally: TallyEngine,
        access: AccessControl,
        config: Any = None,
    ) -> None:
        self.registry = registry
        self.ledger = ledger
        self.tally = tally
        self.access = access
        self.config = config

    @property
    def freeze_on_confirm(self) -> bool:
        return bool(getattr(self.config, "FREEZE_ROUND_ON_CONFIRM", False))

    @property
    def regrant_chairperson(self) -> bool:
        return bool(getattr(self.config, "REGRANT_CHAIRPERSON_EACH_ROUND", False))

    def round_state(self, round_id: int) -> RoundState:
        if not self.registry.is_opened(round_id):
            return RoundState.PENDING
        if self.registry.winner_of(round_id) is not None:
            return RoundState.CONFIRMED
        return RoundState.OPEN

    def require_accepting_ballots(self, round_id: int) -> None:
        """Reject ballots on a confirmed round when rounds freeze on confirmation."""
        if self.freeze_on_confirm and self.round_state(round_id) is RoundState.CONFIRMED:
            raise RoundClosedError(
                f"Ballot: round {round_id} is closed",
                details={"round": round_id},
            )

    def confirm_winner(self, ctx: CallContext, round_id: int) -> int:
        """
        Record the round's current leading proposal as its winner (admin only).

        Returns:
            Index of the confirmed proposal

        Raises:
            UnauthorizedError: If the caller is not an administrator
            WinnerAlreadyConfirmedError: If the round already has a winner
            InvalidProposalIndexError: If the round has no proposals
        """
        self.access.require_admin(ctx)
        if self.registry.winner_of(round_id) is not None:
            raise WinnerAlreadyConfirmedError(
                f"Ballot: winner of round {round_id} is already confirmed",
                details={"round": round_id},
            )
        index = self.tally.winning_proposal(round_id)
        self.registry.record_winner(round_id, self.registry.proposals(round_id)[index].name)

        logger.info(
            "Ballot winner confirmed",
            extra={
                "event": "ballot.winner_confirmed",
                "round": round_id,
                "proposal": index,
                "total_votes": self.tally.total_votes(round_id),
                "confirmed_by": ctx.caller[:10],
            },
        )
        return index

    def open_next_round(self, ctx: CallContext, names: Iterable["str | bytes"]) -> int:
        """
        Open the round after the current one (chairperson only).

        Returns:
            The new current round number

        Raises:
            UnauthorizedError: If the caller is not the chairperson
            RoundNotReadyError: If the current round's winner is not confirmed
            InvalidProposalNameError: If the proposal names are invalid
        """
        self.access.require_chairperson(ctx)
        current = self.registry.current_round()
        if self.registry.winner_of(current) is None:
            raise RoundNotReadyError(
                f"Ballot: winner of round {current} is not confirmed",
                details={"round": current},
            )

        next_round = current + 1
        self.registry.open_proposals(next_round, names)
        if self.regrant_chairperson:
            self.ledger.allocate(next_round, self.access.chairperson, 1)
        return next_round

"""
Round Registry - current round counter, per-round proposals and confirmed winners.

Rounds are opened strictly in sequence: round 0 when the ballot is created,
round r + 1 only once round r has a confirmed winner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from roundvote.core.ballot_exceptions import (
    InvalidProposalIndexError,
    InvalidProposalNameError,
    RoundNotReadyError,
    WinnerAlreadyConfirmedError,
)

logger = logging.getLogger(__name__)

MAX_PROPOSAL_NAME_BYTES = 32


@dataclass
class Proposal:
    """A named option in one round; ``vote_count`` only grows."""

    name: bytes
    vote_count: int = 0

    @property
    def label(self) -> str:
        """Name decoded for display."""
        return self.name.decode("utf-8", errors="replace")

    def to_dict(self) -> dict:
        return {"name": self.name.hex(), "vote_count": self.vote_count}

    @classmethod
    def from_dict(cls, data: dict) -> "Proposal":
        return cls(name=bytes.fromhex(data["name"]), vote_count=int(data.get("vote_count", 0)))


def encode_proposal_name(name: "str | bytes", max_bytes: int = MAX_PROPOSAL_NAME_BYTES) -> bytes:
    """Convert a proposal name to its byte identifier."""
    if isinstance(name, str):
        raw = name.encode("utf-8")
    elif isinstance(name, (bytes, bytearray)):
        raw = bytes(name)
    else:
        raise InvalidProposalNameError(
            f"Ballot: proposal name must be str or bytes, not {type(name).__name__}"
        )
    if not raw:
        raise InvalidProposalNameError("Ballot: proposal name cannot be empty")
    if len(raw) > max_bytes:
        raise InvalidProposalNameError(
            f"Ballot: proposal name exceeds {max_bytes} bytes ({len(raw)})",
            details={"length": len(raw), "max_bytes": max_bytes},
        )
    return raw


class RoundRegistry:
    """Tracks the current round and each round's proposals and winner."""

    def __init__(self, max_name_bytes: int = MAX_PROPOSAL_NAME_BYTES) -> None:
        self.max_name_bytes = max_name_bytes
        self._current_round = 0
        self._proposals: dict[int, list[Proposal]] = {}
        self._winners: dict[int, bytes] = {}

    def current_round(self) -> int:
        return self._current_round

    def is_opened(self, round_id: int) -> bool:
        return round_id in self._proposals

    def winner_of(self, round_id: int) -> bytes | None:
        return self._winners.get(round_id)

    def proposals(self, round_id: int) -> list[Proposal]:
        """Copies of the round's proposals, ordered by index."""
        return [Proposal(p.name, p.vote_count) for p in self._proposals.get(round_id, [])]

    def proposal_count(self, round_id: int) -> int:
        return len(self._proposals.get(round_id, []))

    def open_proposals(self, round_id: int, names: Iterable["str | bytes"]) -> list[Proposal]:
        """
        Create a round's proposal list and make it the current round.

        Raises:
            RoundNotReadyError: If the round is out of sequence or the previous
                round has no confirmed winner
            InvalidProposalNameError: If ``names`` is empty or any name is invalid
        """
        if round_id == 0:
            if self._proposals:
                raise RoundNotReadyError("Ballot: round 0 is already open", details={"round": 0})
        else:
            expected = self._current_round + 1
            if round_id != expected or round_id in self._proposals:
                raise RoundNotReadyError(
                    f"Ballot: round {round_id} is out of sequence (next is {expected})",
                    details={"round": round_id, "expected": expected},
                )
            if self.winner_of(round_id - 1) is None:
                raise RoundNotReadyError(
                    f"Ballot: winner of round {round_id - 1} is not confirmed",
                    details={"round": round_id, "previous_round": round_id - 1},
                )

        if isinstance(names, (str, bytes, bytearray)):
            raise InvalidProposalNameError("Ballot: proposal names must be a sequence of names")
        encoded = [encode_proposal_name(name, self.max_name_bytes) for name in names]
        if not encoded:
            raise InvalidProposalNameError("Ballot: a round needs at least one proposal")

        proposals = [Proposal(name=name) for name in encoded]
        self._proposals[round_id] = proposals
        self._current_round = round_id

        logger.info(
            "Ballot round opened",
            extra={"event": "ballot.round_opened", "round": round_id, "proposals": len(proposals)},
        )
        return self.proposals(round_id)

    def record_winner(self, round_id: int, name: bytes) -> None:
        if round_id in self._winners:
            raise WinnerAlreadyConfirmedError(
                f"Ballot: winner of round {round_id} is already confirmed",
                details={"round": round_id},
            )
        self._winners[round_id] = name

    def add_votes(self, round_id: int, index: int, amount: int) -> int:
        """Add ``amount`` to a proposal's count and return the new count."""
        proposals = self._proposals.get(round_id, [])
        if not 0 <= index < len(proposals):
            raise InvalidProposalIndexError(
                f"Ballot: proposal {index} does not exist in round {round_id}",
                details={"round": round_id, "index": index, "proposals": len(proposals)},
            )
        proposals[index].vote_count += amount
        return proposals[index].vote_count

    # ==================== Checkpoints ====================

    def checkpoint(self, round_id: int) -> dict:
        """
        Copy of one round's proposals and winner plus the round counter.

        Rounds before ``round_id`` are closed and never change, so they are
        not captured. Pass the result to ``rollback`` to undo later changes.
        """
        proposals = self._proposals.get(round_id)
        return {
            "round": round_id,
            "current_round": self._current_round,
            "proposals": None if proposals is None else [Proposal(p.name, p.vote_count) for p in proposals],
            "winner": self._winners.get(round_id),
        }

    def rollback(self, checkpoint: dict) -> None:
        """Return to ``checkpoint``, discarding any round opened after it."""
        round_id = checkpoint["round"]
        for table in (self._proposals, self._winners):
            for later in [r for r in table if r > round_id]:
                del table[later]

        self._current_round = checkpoint["current_round"]
        if checkpoint["proposals"] is None:
            self._proposals.pop(round_id, None)
        else:
            self._proposals[round_id] = [Proposal(p.name, p.vote_count) for p in checkpoint["proposals"]]
        if checkpoint["winner"] is None:
            self._winners.pop(round_id, None)
        else:
            self._winners[round_id] = checkpoint["winner"]

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        return {
            "current_round": self._current_round,
            "proposals": {
                str(r): [p.to_dict() for p in props] for r, props in self._proposals.items()
            },
            "winners": {str(r): name.hex() for r, name in self._winners.items()},
        }

    @classmethod
    def from_dict(cls, data: dict, max_name_bytes: int = MAX_PROPOSAL_NAME_BYTES) -> "RoundRegistry":
        registry = cls(max_name_bytes=max_name_bytes)
        registry._current_round = int(data.get("current_round", 0))
        registry._proposals = {
            int(r): [Proposal.from_dict(p) for p in props]
            for r, props in data.get("proposals", {}).items()
        }
        registry._winners = {int(r): bytes.fromhex(name) for r, name in data.get("winners", {}).items()}
        return registry

"""
Voter Ledger - per-round voter records.

A record is both a ballot (weight, voted flag, chosen proposal) and a
delegation target: delegated weight lands on the terminal record of a chain.
Every round starts with an empty ledger; nothing carries over between rounds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from roundvote.core.ballot_exceptions import AlreadyHasRightError, AlreadyVotedError
from roundvote.governance.access_control import AccessControl, CallContext, normalize_address

logger = logging.getLogger(__name__)


@dataclass
class VoterRecord:
    """
    Voting state of one identity in one round.

    ``vote`` is meaningful only when ``voted`` is set and ``delegate`` is not.
    """

    weight: int = 0
    voted: bool = False
    delegate: Optional[str] = None
    vote: Optional[int] = None

    @property
    def delegated(self) -> bool:
        return self.delegate is not None

    @property
    def directly_voted(self) -> bool:
        return self.voted and self.delegate is None

    def to_dict(self) -> dict:
        return {
            "weight": self.weight,
            "voted": self.voted,
            "delegate": self.delegate,
            "vote": self.vote,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VoterRecord":
        return cls(
            weight=int(data.get("weight", 0)),
            voted=bool(data.get("voted", False)),
            delegate=data.get("delegate"),
            vote=data.get("vote"),
        )


class VoterLedger:
    """Map of round -> identity -> VoterRecord."""

    def __init__(self, access: AccessControl) -> None:
        self.access = access
        self._records: dict[int, dict[str, VoterRecord]] = {}
        self._granted: dict[int, int] = {}
        self._voter_count: dict[int, int] = {}

    def get(self, round_id: int, identity: str) -> VoterRecord:
        """Read-only copy of a record; absent identities read as the default record."""
        record = self._records.get(round_id, {}).get(normalize_address(identity, "voter"))
        return replace(record) if record else VoterRecord()

    def size(self, round_id: int) -> int:
        """Number of records stored for a round."""
        return len(self._records.get(round_id, {}))

    def voter_count(self, round_id: int) -> int:
        """Number of rights granted through ``grant_right`` in a round."""
        return self._voter_count.get(round_id, 0)

    def total_granted(self, round_id: int) -> int:
        """Total weight created in a round (grants plus initial allocations)."""
        return self._granted.get(round_id, 0)

    def delegated(self, round_id: int, identity: str) -> bool:
        return self.get(round_id, identity).delegated

    def directly_voted(self, round_id: int, identity: str) -> bool:
        return self.get(round_id, identity).directly_voted

    def records(self, round_id: int) -> dict[str, VoterRecord]:
        return {identity: replace(rec) for identity, rec in self._records.get(round_id, {}).items()}

    def grant_right(self, ctx: CallContext, round_id: int, identity: str) -> None:
        """
        Give ``identity`` a weight of 1 in ``round_id`` (chairperson only).

        Raises:
            UnauthorizedError: If the caller is not the chairperson
            AlreadyVotedError: If the voter already voted in this round
            AlreadyHasRightError: If the voter's weight is not zero
        """
        self.access.require_chairperson(ctx)
        voter = normalize_address(identity, "voter")
        current = self._records.get(round_id, {}).get(voter)
        if current is not None and current.voted:
            raise AlreadyVotedError(
                "Ballot: voter has already voted",
                details={"round": round_id, "voter": voter},
            )
        if current is not None and current.weight != 0:
            raise AlreadyHasRightError(
                "Ballot: voter already has the right to vote",
                details={"round": round_id, "voter": voter, "weight": current.weight},
            )

        self.allocate(round_id, voter, 1)
        self._voter_count[round_id] = self._voter_count.get(round_id, 0) + 1

        logger.info(
            "Ballot right granted",
            extra={"event": "ballot.right_granted", "round": round_id, "voter": voter[:10]},
        )

    def allocate(self, round_id: int, identity: str, weight: int) -> None:
        """Create new weight on a record, bypassing authorization checks."""
        record = self._record_for_update(round_id, identity)
        record.weight += weight
        self._granted[round_id] = self._granted.get(round_id, 0) + weight

    # ==================== Mutation helpers ====================

    def _record_for_update(self, round_id: int, identity: str) -> VoterRecord:
        return self._records.setdefault(round_id, {}).setdefault(identity, VoterRecord())

    def add_weight(self, round_id: int, identity: str, amount: int) -> int:
        """Move delegated weight onto a record and return its new weight."""
        record = self._record_for_update(round_id, identity)
        record.weight += amount
        return record.weight

    def mark_delegated(self, round_id: int, identity: str, delegate: str) -> VoterRecord:
        record = self._record_for_update(round_id, identity)
        record.voted = True
        record.delegate = delegate
        return record

    def mark_voted(self, round_id: int, identity: str, proposal_index: int) -> VoterRecord:
        record = self._record_for_update(round_id, identity)
        record.voted = True
        record.vote = proposal_index
        return record

    def raw(self, round_id: int, identity: str) -> Optional[VoterRecord]:
        """Stored record without copying, or None; for read-only use by sibling components."""
        return self._records.get(round_id, {}).get(identity)

    # ==================== Checkpoints ====================

    def checkpoint(self, round_id: int) -> dict:
        """Copy of one round's records and counters, for ``rollback``."""
        records = self._records.get(round_id)
        return {
            "round": round_id,
            "records": None if records is None else {i: replace(rec) for i, rec in records.items()},
            "granted": self._granted.get(round_id),
            "voter_count": self._voter_count.get(round_id),
        }

    def rollback(self, checkpoint: dict) -> None:
        """Return the checkpointed round to its saved state and drop later rounds."""
        round_id = checkpoint["round"]
        for table in (self._records, self._granted, self._voter_count):
            for later in [r for r in table if r > round_id]:
                del table[later]

        records = checkpoint["records"]
        if records is None:
            self._records.pop(round_id, None)
        else:
            self._records[round_id] = {i: replace(rec) for i, rec in records.items()}
        for table, key in ((self._granted, "granted"), (self._voter_count, "voter_count")):
            if checkpoint[key] is None:
                table.pop(round_id, None)
            else:
                table[round_id] = checkpoint[key]

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        return {
            "records": {
                str(r): {identity: rec.to_dict() for identity, rec in recs.items()}
                for r, recs in self._records.items()
            },
            "granted": {str(r): total for r, total in self._granted.items()},
            "voter_count": {str(r): count for r, count in self._voter_count.items()},
        }

    @classmethod
    def from_dict(cls, data: dict, access: AccessControl) -> "VoterLedger":
        ledger = cls(access)
        ledger._records = {
            int(r): {identity: VoterRecord.from_dict(rec) for identity, rec in recs.items()}
            for r, recs in data.get("records", {}).items()
        }
        ledger._granted = {int(r): int(total) for r, total in data.get("granted", {}).items()}
        ledger._voter_count = {int(r): int(c) for r, c in data.get("voter_count", {}).items()}
        return ledger

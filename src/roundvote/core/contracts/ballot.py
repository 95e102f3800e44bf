"""
Round-based delegated ballot contract.

A ballot runs a sequence of independent rounds. In each round the chairperson
grants voting rights, voters either vote for a proposal or delegate their whole
weight to someone else, and an administrator confirms the leading proposal as
the round's winner. Only then can the chairperson open the next round.

Every state-changing call is atomic: it runs under the ballot lock against a
checkpoint of the current round and the roles, and rolls back to it if it
raises. Earlier rounds are closed and are never part of a checkpoint.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Union

from roundvote.core.ballot_exceptions import InvalidProposalNameError, get_error_context
from roundvote.core.config import Config
from roundvote.governance.access_control import AccessControl, CallContext, normalize_address
from roundvote.governance.delegation import DelegationResolver
from roundvote.governance.round_lifecycle import RoundLifecycleController, RoundState
from roundvote.governance.round_registry import Proposal, RoundRegistry
from roundvote.governance.tally import TallyEngine
from roundvote.governance.voter_ledger import VoterLedger, VoterRecord

if TYPE_CHECKING:
    from roundvote.core.ballot_storage import BallotStore

logger = logging.getLogger(__name__)

Caller = Union[str, CallContext]


@dataclass
class BallotEvent:
    """Represents a ballot event."""

    event_type: str  # RoundOpened, RightGranted, Delegated, Voted, WinnerConfirmed, RoleTransferred
    round_id: int
    caller: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "round_id": self.round_id,
            "caller": self.caller,
            "data": dict(self.data),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BallotEvent":
        return cls(
            event_type=data["event_type"],
            round_id=int(data["round_id"]),
            caller=data["caller"],
            data=dict(data.get("data", {})),
            timestamp=float(data.get("timestamp", 0.0)),
        )


class RoundBallot:
    """
    Round-based delegated voting ballot.

    The deployer becomes the chairperson; ``owner`` defaults to the deployer.
    Both are administrators. Construction opens round 0 with ``proposal_names``
    and gives the chairperson a weight of 1 in it.

    ``caller`` arguments accept an identity string, resolved against the stored
    roles, or a ``CallContext`` resolved by the host.
    """

    def __init__(
        self,
        deployer: str,
        proposal_names: Iterable["str | bytes"],
        owner: str | None = None,
        config: Any = None,
        address: str = "",
    ) -> None:
        self.config = config if config is not None else Config
        chairperson = normalize_address(deployer, "deployer")
        access = AccessControl(owner=owner or chairperson, chairperson=chairperson)
        registry = RoundRegistry(max_name_bytes=self._max_name_bytes())
        self._lock = threading.RLock()
        self.events: list[BallotEvent] = []
        self._wire(access, registry, VoterLedger(access))

        names = self._proposal_list(proposal_names)
        self.address = address or self._generate_address(chairperson, names)

        with self.atomic():
            proposals = self.registry.open_proposals(0, names)
            self.ledger.allocate(0, chairperson, 1)
            self._emit("RoundOpened", 0, chairperson, proposals=[p.label for p in proposals])

        logger.info(
            "Ballot deployed",
            extra={
                "event": "ballot.deployed",
                "address": self.address,
                "chairperson": chairperson[:10],
                "owner": self.access.owner[:10],
                "proposals": len(names),
            },
        )

    def _wire(self, access: AccessControl, registry: RoundRegistry, ledger: VoterLedger) -> None:
        self.access = access
        self.registry = registry
        self.ledger = ledger
        self.tally = TallyEngine(registry, ledger)
        self.delegation = DelegationResolver(ledger, self.tally)
        self.lifecycle = RoundLifecycleController(registry, ledger, self.tally, access, self.config)

    def _max_name_bytes(self) -> int:
        return int(getattr(self.config, "MAX_PROPOSAL_NAME_BYTES", 32))

    @staticmethod
    def _proposal_list(proposal_names: Iterable["str | bytes"]) -> list:
        # A bare string is one name, not a sequence of one-letter names.
        if isinstance(proposal_names, (str, bytes, bytearray)):
            raise InvalidProposalNameError(
                "Ballot: proposal names must be a sequence of names",
                details={"type": type(proposal_names).__name__},
            )
        return list(proposal_names)

    @staticmethod
    def _generate_address(deployer: str, names: list) -> str:
        addr_input = f"{deployer}{names!r}{time.time()}".encode()
        addr_hash = hashlib.sha3_256(addr_input).digest()
        return f"0x{addr_hash[-20:].hex()}"

    # ==================== Transactions ====================

    def snapshot(self) -> dict[str, Any]:
        """Complete copy of the ballot state, usable with ``restore``."""
        with self._lock:
            return {
                "access": self.access.to_dict(),
                "registry": self.registry.to_dict(),
                "ledger": self.ledger.to_dict(),
                "event_count": len(self.events),
            }

    def restore(self, snapshot: dict[str, Any]) -> None:
        """Restore ballot state from a snapshot created by ``snapshot``."""
        with self._lock:
            access = AccessControl.from_dict(snapshot["access"])
            registry = RoundRegistry.from_dict(snapshot["registry"], self._max_name_bytes())
            ledger = VoterLedger.from_dict(snapshot["ledger"], access)
            self._wire(access, registry, ledger)
            del self.events[snapshot["event_count"]:]

    def _checkpoint(self) -> dict[str, Any]:
        round_id = self.registry.current_round()
        return {
            "roles": (self.access.owner, self.access.chairperson),
            "registry": self.registry.checkpoint(round_id),
            "ledger": self.ledger.checkpoint(round_id),
            "event_count": len(self.events),
        }

    def _rollback(self, saved: dict[str, Any]) -> None:
        self.access.owner, self.access.chairperson = saved["roles"]
        self.registry.rollback(saved["registry"])
        self.ledger.rollback(saved["ledger"])
        del self.events[saved["event_count"]:]

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Run a block of ballot calls as one all-or-nothing step.

        The ballot lock is held for the whole block. If the block raises, every
        change made inside it is undone, emitted events included, and the
        exception propagates. Only the current round is checkpointed.

        Usage:
            with ballot.atomic():
                ballot.vote(caller, 1)
                store.save(ballot.address, ballot.to_dict())
        """
        with self._lock:
            saved = self._checkpoint()
            try:
                yield
            except Exception as exc:
                self._rollback(saved)
                logger.debug(
                    "Ballot operation rolled back",
                    extra={"event": "ballot.rolled_back", "address": self.address, **get_error_context(exc)},
                )
                raise

    def _context(self, caller: Caller) -> CallContext:
        return self.access.context_for(caller)

    def _round(self, round_id: int | None) -> int:
        return self.registry.current_round() if round_id is None else round_id

    # ==================== View Functions ====================

    @property
    def owner(self) -> str:
        return self.access.owner

    @property
    def chairperson(self) -> str:
        return self.access.chairperson

    def current_round(self) -> int:
        return self.registry.current_round()

    def winner_of(self, round_id: int) -> bytes | None:
        return self.registry.winner_of(round_id)

    def get_voter(self, voter: str, round_id: int | None = None) -> VoterRecord:
        return self.ledger.get(self._round(round_id), voter)

    def get_proposals(self, round_id: int | None = None) -> list[Proposal]:
        return self.registry.proposals(self._round(round_id))

    def round_state(self, round_id: int | None = None) -> RoundState:
        return self.lifecycle.round_state(self._round(round_id))

    def voter_count(self, round_id: int | None = None) -> int:
        return self.ledger.voter_count(self._round(round_id))

    def delegated(self, voter: str) -> bool:
        return self.ledger.delegated(self.current_round(), voter)

    def directly_voted(self, voter: str) -> bool:
        return self.ledger.directly_voted(self.current_round(), voter)

    def winning_proposal(self, round_id: int | None = None) -> int:
        """Index of the leading proposal; the lowest index wins ties."""
        with self._lock:
            return self.tally.winning_proposal(self._round(round_id))

    def winner_name(self, round_id: int | None = None) -> bytes:
        with self._lock:
            return self.tally.winner_name(self._round(round_id))

    def results(self, round_id: int | None = None) -> list[dict]:
        with self._lock:
            return self.tally.results(self._round(round_id))

    def is_admin(self, caller: Caller) -> bool:
        if isinstance(caller, CallContext):
            return caller.is_admin
        return self.access.is_admin(caller)

    # ==================== State-Changing Functions ====================

    def open_next_round(self, caller: Caller, proposal_names: Iterable["str | bytes"]) -> int:
        """
        Open the next round with fresh proposals (chairperson only).

        Returns:
            The new round number

        Raises:
            UnauthorizedError: If the caller is not the chairperson
            RoundNotReadyError: If the current round's winner is not confirmed
            InvalidProposalNameError: If a proposal name is invalid
        """
        with self.atomic():
            ctx = self._context(caller)
            round_id = self.lifecycle.open_next_round(ctx, self._proposal_list(proposal_names))
            self._emit(
                "RoundOpened",
                round_id,
                ctx.caller,
                proposals=[p.label for p in self.registry.proposals(round_id)],
            )
            return round_id

    def grant_right(self, caller: Caller, voter: str) -> None:
        """Give ``voter`` the right to vote in the current round (chairperson only)."""
        with self.atomic():
            ctx = self._context(caller)
            round_id = self.current_round()
            self.ledger.grant_right(ctx, round_id, voter)
            self._emit("RightGranted", round_id, ctx.caller, voter=normalize_address(voter, "voter"))

    def delegate(self, caller: Caller, to: str) -> str:
        """
        Delegate the caller's vote to ``to`` for the current round.

        Returns:
            The terminal delegate that now carries the weight

        Raises:
            AlreadyVotedError: If the caller already voted or delegated
            SelfDelegationError: If ``to`` is the caller
            DelegationCycleError: If the delegation would form a loop
            RoundClosedError: If the round is frozen after confirmation
        """
        with self.atomic():
            ctx = self._context(caller)
            round_id = self.current_round()
            self.lifecycle.require_accepting_ballots(round_id)
            weight = self.ledger.get(round_id, ctx.caller).weight
            terminal = self.delegation.delegate(ctx, round_id, to)
            self._emit(
                "Delegated",
                round_id,
                ctx.caller,
                to=normalize_address(to, "delegate"),
                terminal=terminal,
                weight=weight,
            )
            return terminal

    def vote(self, caller: Caller, proposal_index: int) -> int:
        """
        Give the caller's vote, including delegated weight, to a proposal.

        Returns:
            The proposal's new vote count

        Raises:
            AlreadyVotedError: If the caller already voted or delegated
            NoRightToVoteError: If the caller has no weight
            InvalidProposalIndexError: If the proposal does not exist
            RoundClosedError: If the round is frozen after confirmation
        """
        with self.atomic():
            ctx = self._context(caller)
            round_id = self.current_round()
            self.lifecycle.require_accepting_ballots(round_id)
            weight = self.ledger.get(round_id, ctx.caller).weight
            new_count = self.tally.vote(ctx, round_id, proposal_index)
            self._emit("Voted", round_id, ctx.caller, proposal=proposal_index, weight=weight)
            return new_count

    def confirm_winner(self, caller: Caller) -> int:
        """
        Confirm the current round's leading proposal as its winner (admin only).

        Returns:
            Index of the winning proposal
        """
        with self.atomic():
            ctx = self._context(caller)
            round_id = self.current_round()
            index = self.lifecycle.confirm_winner(ctx, round_id)
            self._emit(
                "WinnerConfirmed",
                round_id,
                ctx.caller,
                proposal=index,
                name=self.registry.winner_of(round_id).decode("utf-8", errors="replace"),
            )
            return index

    def set_chairperson(self, caller: Caller, identity: str) -> None:
        """Hand the chairperson role to ``identity`` (admin only)."""
        with self.atomic():
            ctx = self._context(caller)
            previous = self.access.set_chairperson(ctx, identity)
            self._emit_role("chairperson", ctx.caller, previous, self.access.chairperson)

    def set_owner(self, caller: Caller, identity: str) -> None:
        """Hand the owner role to ``identity`` (admin only)."""
        with self.atomic():
            ctx = self._context(caller)
            previous = self.access.set_owner(ctx, identity)
            self._emit_role("owner", ctx.caller, previous, self.access.owner)

    # ==================== Events ====================

    def _emit(self, event_type: str, round_id: int, caller: str, **data: Any) -> None:
        self.events.append(BallotEvent(event_type=event_type, round_id=round_id, caller=caller, data=data))

    def _emit_role(self, role: str, caller: str, previous: str, new: str) -> None:
        self._emit("RoleTransferred", self.current_round(), caller, role=role, previous=previous, new=new)

    def recent_events(self, limit: int | None = None) -> list[BallotEvent]:
        with self._lock:
            if limit is None:
                return list(self.events)
            return self.events[-limit:] if limit > 0 else []

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        """Serialize ballot state to dictionary."""
        with self._lock:
            return {
                "address": self.address,
                "access": self.access.to_dict(),
                "registry": self.registry.to_dict(),
                "ledger": self.ledger.to_dict(),
                "events": [event.to_dict() for event in self.events],
            }

    @classmethod
    def from_dict(cls, data: dict, config: Any = None) -> "RoundBallot":
        """Deserialize ballot state from dictionary."""
        ballot = cls.__new__(cls)
        ballot.config = config if config is not None else Config
        ballot._lock = threading.RLock()
        ballot.address = data["address"]
        ballot.events = [BallotEvent.from_dict(event) for event in data.get("events", [])]
        access = AccessControl.from_dict(data["access"])
        ballot._wire(
            access,
            RoundRegistry.from_dict(data["registry"], ballot._max_name_bytes()),
            VoterLedger.from_dict(data["ledger"], access),
        )
        return ballot


class BallotFactory:
    """
    Factory for deploying ballots.

    Deployed ballots are kept in memory by address and, when a ``BallotStore``
    is supplied, written to it on creation and on ``persist``.
    """

    def __init__(self, store: "BallotStore" | None = None, config: Any = None) -> None:
        self.store = store
        self.config = config
        self.deployed_ballots: dict[str, RoundBallot] = {}

    def create_ballot(
        self,
        creator: str,
        proposal_names: Iterable["str | bytes"],
        owner: str | None = None,
    ) -> RoundBallot:
        """
        Deploy a new ballot.

        Args:
            creator: Address deploying the ballot (becomes chairperson)
            proposal_names: Proposals of round 0
            owner: Optional separate owner (defaults to the creator)

        Returns:
            Deployed RoundBallot instance
        """
        ballot = RoundBallot(creator, proposal_names, owner=owner, config=self.config)
        self.persist(ballot)
        self.deployed_ballots[ballot.address] = ballot

        logger.info(
            "Ballot created",
            extra={
                "event": "ballot.created",
                "address": ballot.address,
                "creator": ballot.chairperson[:10],
                "persisted": self.store is not None,
            },
        )
        return ballot

    def persist(self, ballot: RoundBallot) -> None:
        if self.store is not None:
            self.store.save(ballot.address, ballot.to_dict())

    def get_ballot(self, address: str) -> RoundBallot | None:
        """
        Get a deployed ballot by address.

        Returns:
            Ballot instance or None
        """
        key = address.lower()
        if key in self.deployed_ballots:
            return self.deployed_ballots[key]

        if self.store is not None and self.store.exists(key):
            ballot = RoundBallot.from_dict(self.store.load(key), config=self.config)
            self.deployed_ballots[key] = ballot
            return ballot

        return None

    def list_ballots(self) -> list[dict]:
        """List deployed ballots, including ones only present in the store."""
        addresses = set(self.deployed_ballots)
        if self.store is not None:
            addresses.update(self.store.list_addresses())

        ballots = []
        for address in sorted(addresses):
            ballot = self.get_ballot(address)
            if ballot is None:
                continue
            ballots.append({
                "address": address,
                "chairperson": ballot.chairperson,
                "owner": ballot.owner,
                "current_round": ballot.current_round(),
                "state": ballot.round_state().value,
            })
        return ballots

"""
Role bookkeeping and call authorization for ballots.

The identity of the caller and whether it is an administrator are resolved
outside the ballot state machine. Every state-changing operation receives that
decision as a ``CallContext``; ``AccessControl.context_for`` is the default
resolver, deriving admin status from the stored owner and chairperson roles.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from roundvote.core.ballot_exceptions import InvalidAddressError, UnauthorizedError

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


def normalize_address(address: str, field: str = "address") -> str:
    """Normalize an identity to lowercase, rejecting empty and zero addresses."""
    if not isinstance(address, str):
        raise InvalidAddressError(f"{field} must be a string", details={"field": field})
    normalized = address.strip().lower()
    if not normalized or normalized == ZERO_ADDRESS:
        raise InvalidAddressError(f"{field} is empty or the zero address", details={"field": field})
    return normalized


@dataclass(frozen=True)
class CallContext:
    """Resolved identity of the caller of one operation."""

    caller: str
    is_admin: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "caller", normalize_address(self.caller, "caller"))


class AccessControl:
    """Holds the owner and chairperson roles; both are administrators."""

    def __init__(self, owner: str, chairperson: str) -> None:
        self.owner = normalize_address(owner, "owner")
        self.chairperson = normalize_address(chairperson, "chairperson")

    def is_admin(self, identity: str) -> bool:
        identity = identity.strip().lower()
        return identity in (self.owner, self.chairperson)

    def context_for(self, caller: "str | CallContext") -> CallContext:
        """Resolve a caller identity into a call context."""
        if isinstance(caller, CallContext):
            return caller
        normalized = normalize_address(caller, "caller")
        return CallContext(caller=normalized, is_admin=self.is_admin(normalized))

    def require_admin(self, ctx: CallContext) -> None:
        if not ctx.is_admin:
            raise UnauthorizedError(
                "Ballot: caller is not an administrator",
                details={"caller": ctx.caller},
            )

    def require_chairperson(self, ctx: CallContext) -> None:
        if ctx.caller != self.chairperson:
            raise UnauthorizedError(
                "Ballot: caller is not the chairperson",
                details={"caller": ctx.caller},
            )

    def set_owner(self, ctx: CallContext, identity: str) -> str:
        """Transfer the owner role (admin only). Returns the previous owner."""
        self.require_admin(ctx)
        new_owner = normalize_address(identity, "owner")
        previous, self.owner = self.owner, new_owner
        logger.info(
            "Ballot owner transferred",
            extra={"event": "ballot.owner_transferred", "from": previous[:10], "to": new_owner[:10]},
        )
        return previous

    def set_chairperson(self, ctx: CallContext, identity: str) -> str:
        """Transfer the chairperson role (admin only). Returns the previous chairperson."""
        self.require_admin(ctx)
        new_chair = normalize_address(identity, "chairperson")
        previous, self.chairperson = self.chairperson, new_chair
        logger.info(
            "Ballot chairperson transferred",
            extra={"event": "ballot.chairperson_transferred", "from": previous[:10], "to": new_chair[:10]},
        )
        return previous

    def to_dict(self) -> dict:
        return {"owner": self.owner, "chairperson": self.chairperson}

    @classmethod
    def from_dict(cls, data: dict) -> "AccessControl":
        return cls(owner=data["owner"], chairperson=data["chairperson"])

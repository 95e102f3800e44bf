"""
Ballot state machine components, leaves first.
"""

from .access_control import AccessControl, CallContext, normalize_address
from .delegation import DelegationResolver
from .round_lifecycle import RoundLifecycleController, RoundState
from .round_registry import Proposal, RoundRegistry
from .tally import TallyEngine
from .voter_ledger import VoterLedger, VoterRecord

__all__ = [
    "AccessControl",
    "CallContext",
    "normalize_address",
    "DelegationResolver",
    "RoundLifecycleController",
    "RoundState",
    "Proposal",
    "RoundRegistry",
    "TallyEngine",
    "VoterLedger",
    "VoterRecord",
]

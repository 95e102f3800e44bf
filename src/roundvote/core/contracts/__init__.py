"""
roundvote contracts.

- RoundBallot: round-based delegated voting ballot
- BallotFactory: deploys ballots and looks them up by address
"""

from .ballot import BallotEvent, BallotFactory, RoundBallot

__all__ = [
    "BallotEvent",
    "BallotFactory",
    "RoundBallot",
]

"""
roundvote - Round-based delegated voting ledger

Main Components:
- Governance: round registry, voter ledger, delegation, tally and round lifecycle
- Contracts: the RoundBallot contract and its factory
- Storage and API: JSON ballot storage and the Flask ballot blueprint
"""

__version__ = "0.1.0"
__author__ = "roundvote Development Team"

__all__ = []

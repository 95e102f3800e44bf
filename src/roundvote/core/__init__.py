"""
roundvote Core Module

Ballot contract, configuration, errors, logging, storage and the HTTP API.
"""

__all__ = []

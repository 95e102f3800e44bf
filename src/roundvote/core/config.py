"""
roundvote Configuration

All options are read from ``ROUNDVOTE_*`` environment variables at import time
and exposed as attributes of ``Config``. Ballot components read options with
``getattr(config, NAME, default)`` so callers may pass any object carrying the
attributes they want to override.
"""

from __future__ import annotations

import logging
import os

from roundvote.core.ballot_exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _get_flag(env_var: str, default: str = "0") -> bool:
    """Read a 0/1 flag from the environment."""
    raw = os.getenv(env_var, default).strip()
    if raw not in ("0", "1"):
        raise ConfigurationError(
            f"{env_var} must be 0 or 1 (got {raw!r})",
            details={"env_var": env_var, "value": raw},
        )
    return raw == "1"


def _get_positive_int(env_var: str, default: str) -> int:
    """Read a positive integer from the environment."""
    raw = os.getenv(env_var, default).strip()
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{env_var} must be an integer (got {raw!r})",
            details={"env_var": env_var, "value": raw},
        ) from exc
    if value <= 0:
        raise ConfigurationError(
            f"{env_var} must be positive (got {value})",
            details={"env_var": env_var, "value": value},
        )
    return value


# Proposal names are opaque byte identifiers of at most 32 bytes.
MAX_PROPOSAL_NAME_BYTES = 32

# Open design choices; both default to the behaviour of the deployed ballot.
REGRANT_CHAIRPERSON_EACH_ROUND = _get_flag("ROUNDVOTE_REGRANT_CHAIRPERSON_EACH_ROUND")
FREEZE_ROUND_ON_CONFIRM = _get_flag("ROUNDVOTE_FREEZE_ROUND_ON_CONFIRM")

DATA_DIR = os.getenv("ROUNDVOTE_DATA_DIR", os.path.join(os.getcwd(), "data", "ballots"))
LOG_LEVEL = os.getenv("ROUNDVOTE_LOG_LEVEL", "INFO").strip().upper()
LOG_FILE = os.getenv("ROUNDVOTE_LOG_FILE", "").strip()
LOG_ENVIRONMENT = os.getenv("ROUNDVOTE_ENVIRONMENT", "production").strip()
CALLER_HEADER = os.getenv("ROUNDVOTE_CALLER_HEADER", "X-Caller-Address").strip()
EVENT_QUERY_LIMIT = _get_positive_int("ROUNDVOTE_EVENT_QUERY_LIMIT", "100")

if LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
    raise ConfigurationError(
        f"ROUNDVOTE_LOG_LEVEL is not a valid level: {LOG_LEVEL}",
        details={"env_var": "ROUNDVOTE_LOG_LEVEL", "value": LOG_LEVEL},
    )

if not CALLER_HEADER:
    raise ConfigurationError("ROUNDVOTE_CALLER_HEADER cannot be empty")


class Config:
    """Ballot configuration resolved from the environment."""

    MAX_PROPOSAL_NAME_BYTES = MAX_PROPOSAL_NAME_BYTES
    REGRANT_CHAIRPERSON_EACH_ROUND = REGRANT_CHAIRPERSON_EACH_ROUND
    FREEZE_ROUND_ON_CONFIRM = FREEZE_ROUND_ON_CONFIRM
    DATA_DIR = DATA_DIR
    LOG_LEVEL = LOG_LEVEL
    LOG_FILE = LOG_FILE
    LOG_ENVIRONMENT = LOG_ENVIRONMENT
    CALLER_HEADER = CALLER_HEADER
    EVENT_QUERY_LIMIT = EVENT_QUERY_LIMIT


if REGRANT_CHAIRPERSON_EACH_ROUND:
    logger.info(
        "Chairperson weight will be re-granted every round",
        extra={"event": "config.regrant_chairperson"},
    )

__all__ = [
    "Config",
    "ConfigurationError",
    "MAX_PROPOSAL_NAME_BYTES",
    "REGRANT_CHAIRPERSON_EACH_ROUND",
    "FREEZE_ROUND_ON_CONFIRM",
    "DATA_DIR",
    "CALLER_HEADER",
    "EVENT_QUERY_LIMIT",
]

"""
Base utilities for API Blueprints

Provides common dependencies and helper functions shared across blueprints.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from flask import g, jsonify, request

from roundvote.core.ballot_exceptions import (
    BallotError,
    BallotStorageError,
    BallotValidationError,
    SelfDelegationError,
    UnauthorizedError,
    get_error_context,
)

if TYPE_CHECKING:
    from roundvote.core.contracts.ballot import BallotFactory, RoundBallot

logger = logging.getLogger(__name__)


def get_api_context() -> Dict[str, Any]:
    """Get the API context containing the ballot and its collaborators.

    The context is stored in Flask's g object during request setup.
    """
    return g.get("api_context", {})


def get_ballot() -> "RoundBallot":
    """Get the ballot instance from context."""
    return get_api_context().get("ballot")


def get_factory() -> Optional["BallotFactory"]:
    """Get the ballot factory from context."""
    return get_api_context().get("factory")


def get_config() -> Any:
    return get_api_context().get("config")


def get_caller() -> Optional[str]:
    """Caller identity supplied by the upstream identity gateway."""
    header = getattr(get_config(), "CALLER_HEADER", "X-Caller-Address")
    value = request.headers.get(header, "").strip()
    return value or None


def persist_ballot() -> None:
    """Write the ballot back to the factory's store, if one is configured."""
    factory = get_factory()
    if factory is not None:
        factory.persist(get_ballot())


def success_response(payload: Dict[str, Any], status: int = 200) -> Tuple[Any, int]:
    """Return a success payload with consistent structure."""
    body = {"success": True, **payload}
    return jsonify(body), status


def error_response(
    message: str,
    status: int = 400,
    code: str = "bad_request",
    context: Optional[Dict[str, Any]] = None,
    event_type: str = "ballot_api_error",
) -> Tuple[Any, int]:
    """Return an error response and emit a structured log."""
    level = logging.ERROR if status >= 500 else logging.WARNING
    logger.log(
        level,
        "Ballot API error",
        extra={"event": event_type, "code": code, "status": status, "context": context or {}},
    )
    return jsonify({"success": False, "error": message, "code": code}), status


def status_for(error: BallotError) -> int:
    """HTTP status for a ballot error kind."""
    if isinstance(error, UnauthorizedError):
        return 403
    if isinstance(error, (BallotValidationError, SelfDelegationError)):
        return 400
    if isinstance(error, BallotStorageError):
        return 500
    # State conflicts, delegation cycles included.
    return 409


def ballot_error_response(error: BallotError, context_str: str) -> Tuple[Any, int]:
    """Translate a ballot error into the standard error payload."""
    status = status_for(error)
    message = "Internal server error" if status >= 500 else str(error)
    return error_response(
        message,
        status=status,
        code=error.code,
        context={"operation": context_str, **get_error_context(error)},
        event_type="ballot_api_rejected",
    )


def require_caller() -> Optional[Tuple[Any, int]]:
    """Check that the request carries a caller identity.

    Returns None if present, or an error response tuple if missing.
    """
    if get_caller():
        return None
    header = getattr(get_config(), "CALLER_HEADER", "X-Caller-Address")
    return error_response(
        f"Missing {header} header",
        status=401,
        code="missing_caller",
        event_type="ballot_api_unauthenticated",
    )

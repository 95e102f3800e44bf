"""
Ballot API Blueprint

Handles ballot endpoints: rounds, voting rights, delegation, votes, winner
confirmation, role transfers and the event log. The caller identity is taken
from the configured caller header.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Tuple, Type

from flask import Blueprint, request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from roundvote.core.api_blueprints.base import (
    ballot_error_response,
    error_response,
    get_ballot,
    get_caller,
    get_config,
    persist_ballot,
    require_caller,
    success_response,
)
from roundvote.core.ballot_exceptions import BallotError
from roundvote.core.input_validation_schemas import (
    DelegateInput,
    EventQueryInput,
    GrantRightInput,
    OpenRoundInput,
    RoleTransferInput,
    VoteInput,
)

logger = logging.getLogger(__name__)

ballot_bp = Blueprint("ballot", __name__, url_prefix="/ballot")

ROLES = ("owner", "chairperson")


def _parse(model_cls: Type[BaseModel], payload: Dict[str, Any], operation: str):
    """Validate a payload; returns (model, None) or (None, error response)."""
    try:
        return model_cls.model_validate(payload), None
    except PydanticValidationError as exc:
        logger.warning(
            "PydanticValidationError in %s",
            operation,
            extra={
                "error_type": "PydanticValidationError",
                "error": str(exc),
                "function": operation,
            },
        )
        return None, error_response(
            f"Invalid {operation.replace('_', ' ')} request",
            status=400,
            code="invalid_payload",
            context={"errors": exc.errors(include_url=False, include_context=False)},
        )


def _execute(operation: str, action: Callable[[str], Any]) -> Tuple[Any, Optional[Tuple[Any, int]]]:
    """
    Run a state-changing ballot call for the request's caller and persist it.

    The call and the write form one atomic step under the ballot lock: a
    failed write undoes the call. ``action`` also builds the response payload
    there, so it never sees a later request's changes.
    """
    auth_error = require_caller()
    if auth_error:
        return None, auth_error
    try:
        with get_ballot().atomic():
            result = action(get_caller())
            persist_ballot()
    except BallotError as exc:
        return None, ballot_error_response(exc, operation)
    return result, None


def _round_arg() -> Tuple[Optional[int], Optional[Tuple[Any, int]]]:
    raw = request.args.get("round")
    if raw is None:
        return None, None
    try:
        value = int(raw)
    except ValueError:
        value = -1
    if value < 0:
        return None, error_response("round must be a non-negative integer", status=400, code="invalid_round")
    return value, None


def _round_payload(round_id: int) -> Dict[str, Any]:
    ballot = get_ballot()
    winner = ballot.winner_of(round_id)
    return {
        "round": round_id,
        "state": ballot.round_state(round_id).value,
        "proposals": ballot.results(round_id),
        "winner": winner.decode("utf-8", errors="replace") if winner is not None else None,
    }


@ballot_bp.route("/round", methods=["GET"])
def current_round() -> Tuple[Any, int]:
    """Current round with its proposals and leading proposal."""
    ballot = get_ballot()
    round_id = ballot.current_round()
    payload = _round_payload(round_id)
    payload["leader"] = ballot.winning_proposal(round_id)
    payload["voter_count"] = ballot.voter_count(round_id)
    return success_response(payload)


@ballot_bp.route("/rounds/<int:round_id>", methods=["GET"])
def get_round(round_id: int) -> Tuple[Any, int]:
    ballot = get_ballot()
    if not ballot.registry.is_opened(round_id):
        return error_response(f"Round {round_id} not found", status=404, code="round_not_found")
    return success_response(_round_payload(round_id))


@ballot_bp.route("/rounds", methods=["POST"])
def open_round() -> Tuple[Any, int]:
    model, error = _parse(OpenRoundInput, request.get_json(silent=True) or {}, "open_round")
    if error:
        return error
    payload, error = _execute(
        "open_round",
        lambda caller: _round_payload(get_ballot().open_next_round(caller, model.proposals)),
    )
    if error:
        return error
    return success_response(payload, status=201)


@ballot_bp.route("/rights", methods=["POST"])
def grant_right() -> Tuple[Any, int]:
    model, error = _parse(GrantRightInput, request.get_json(silent=True) or {}, "grant_right")
    if error:
        return error

    def action(caller: str) -> Dict[str, Any]:
        ballot = get_ballot()
        ballot.grant_right(caller, model.voter)
        return {
            "round": ballot.current_round(),
            "voter": model.voter.lower(),
            "weight": ballot.get_voter(model.voter).weight,
        }

    payload, error = _execute("grant_right", action)
    if error:
        return error
    return success_response(payload)


@ballot_bp.route("/delegate", methods=["POST"])
def delegate() -> Tuple[Any, int]:
    model, error = _parse(DelegateInput, request.get_json(silent=True) or {}, "delegate")
    if error:
        return error

    def action(caller: str) -> Dict[str, Any]:
        ballot = get_ballot()
        terminal = ballot.delegate(caller, model.to)
        return {"round": ballot.current_round(), "delegate": terminal}

    payload, error = _execute("delegate", action)
    if error:
        return error
    return success_response(payload)


@ballot_bp.route("/vote", methods=["POST"])
def vote() -> Tuple[Any, int]:
    model, error = _parse(VoteInput, request.get_json(silent=True) or {}, "vote")
    if error:
        return error

    def action(caller: str) -> Dict[str, Any]:
        ballot = get_ballot()
        vote_count = ballot.vote(caller, model.proposal_index)
        return {
            "round": ballot.current_round(),
            "proposal_index": model.proposal_index,
            "vote_count": vote_count,
        }

    payload, error = _execute("vote", action)
    if error:
        return error
    return success_response(payload)


@ballot_bp.route("/confirm", methods=["POST"])
def confirm_winner() -> Tuple[Any, int]:
    def action(caller: str) -> Dict[str, Any]:
        ballot = get_ballot()
        round_id = ballot.current_round()
        index = ballot.confirm_winner(caller)
        return {
            "round": round_id,
            "winning_proposal": index,
            "winner_name": ballot.winner_of(round_id).decode("utf-8", errors="replace"),
        }

    payload, error = _execute("confirm_winner", action)
    if error:
        return error
    return success_response(payload)


@ballot_bp.route("/winner", methods=["GET"])
def winner() -> Tuple[Any, int]:
    """Leading proposal of a round (current round by default)."""
    round_id, error = _round_arg()
    if error:
        return error
    ballot = get_ballot()
    try:
        index = ballot.winning_proposal(round_id)
        name = ballot.winner_name(round_id)
    except BallotError as exc:
        return ballot_error_response(exc, "winner")
    resolved = ballot.current_round() if round_id is None else round_id
    return success_response(
        {
            "round": resolved,
            "winning_proposal": index,
            "winner_name": name.decode("utf-8", errors="replace"),
            "confirmed": ballot.winner_of(resolved) is not None,
        }
    )


@ballot_bp.route("/voters/<address>", methods=["GET"])
def get_voter(address: str) -> Tuple[Any, int]:
    round_id, error = _round_arg()
    if error:
        return error
    ballot = get_ballot()
    try:
        record = ballot.get_voter(address, round_id)
    except BallotError as exc:
        return ballot_error_response(exc, "get_voter")
    resolved = ballot.current_round() if round_id is None else round_id
    return success_response({"round": resolved, "address": address.lower(), **record.to_dict()})


@ballot_bp.route("/roles/<role>", methods=["POST"])
def transfer_role(role: str) -> Tuple[Any, int]:
    if role not in ROLES:
        return error_response(f"Unknown role: {role}", status=404, code="unknown_role")
    model, error = _parse(RoleTransferInput, request.get_json(silent=True) or {}, "transfer_role")
    if error:
        return error

    def action(caller: str) -> Dict[str, Any]:
        ballot = get_ballot()
        if role == "owner":
            ballot.set_owner(caller, model.address)
        else:
            ballot.set_chairperson(caller, model.address)
        return {"role": role, "address": getattr(ballot, role)}

    payload, error = _execute("transfer_role", action)
    if error:
        return error
    return success_response(payload)


@ballot_bp.route("/admin", methods=["GET"])
def is_admin() -> Tuple[Any, int]:
    auth_error = require_caller()
    if auth_error:
        return auth_error
    caller = get_caller()
    return success_response({"address": caller.lower(), "is_admin": get_ballot().is_admin(caller)})


@ballot_bp.route("/events", methods=["GET"])
def events() -> Tuple[Any, int]:
    max_limit = getattr(get_config(), "EVENT_QUERY_LIMIT", 100)
    model, error = _parse(EventQueryInput, {"limit": request.args.get("limit", max_limit)}, "events")
    if error:
        return error
    limit = min(model.limit, max_limit)
    recent = get_ballot().recent_events(limit)
    return success_response({"count": len(recent), "events": [event.to_dict() for event in recent]})

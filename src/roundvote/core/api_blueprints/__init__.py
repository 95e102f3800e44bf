"""
roundvote API Blueprints

Usage:
    from roundvote.core.api_blueprints import register_blueprints
    register_blueprints(app, ballot, factory=factory)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from flask import Flask, g, request

from roundvote.core.api_blueprints.ballot_bp import ballot_bp
from roundvote.core.logging_config import clear_correlation_id, set_correlation_id

if TYPE_CHECKING:
    from roundvote.core.contracts.ballot import BallotFactory, RoundBallot

__all__ = [
    "ballot_bp",
    "register_blueprints",
    "ALL_BLUEPRINTS",
]

logger = logging.getLogger(__name__)

ALL_BLUEPRINTS = [ballot_bp]

REQUEST_ID_HEADER = "X-Request-ID"


def register_blueprints(
    app: Flask,
    ballot: "RoundBallot",
    factory: "BallotFactory" | None = None,
    config: Any = None,
) -> None:
    """
    Register the ballot blueprint with the Flask app.

    This function sets up:
    1. A before_request handler that injects the ballot context into Flask's g
       object and assigns the request a correlation id
    2. An after_request handler that echoes the correlation id
    3. The ballot blueprint (url_prefix="/ballot")

    Args:
        app: Flask application instance
        ballot: Ballot served by the API
        factory: Optional BallotFactory used to persist the ballot after changes
        config: Configuration object (defaults to roundvote.core.config.Config)
    """
    if config is None:
        from roundvote.core.config import Config as config

    api_context = {
        "ballot": ballot,
        "factory": factory,
        "config": config,
    }

    @app.before_request
    def inject_api_context() -> None:
        """Inject API context into Flask's g object for blueprint access."""
        g.api_context = api_context
        g.correlation_id = set_correlation_id(request.headers.get(REQUEST_ID_HEADER) or None)

    @app.after_request
    def attach_correlation_id(response):
        corr_id = g.get("correlation_id")
        if corr_id:
            response.headers[REQUEST_ID_HEADER] = corr_id
        return response

    @app.teardown_request
    def reset_correlation_id(exc) -> None:
        clear_correlation_id()

    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)

    logger.info(
        "Ballot API registered",
        extra={"event": "ballot.api_registered", "address": ballot.address},
    )

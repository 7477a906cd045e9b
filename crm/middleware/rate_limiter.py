"""
Rate limits (Flask-Limiter).

The Limiter lives in ``crm`` with no default limits. Login gets its own
limit through ``login_limit``. POST, PUT and DELETE requests on the
configuration blueprints share WRITE_RATE_LIMIT; reads are not limited.
Health probes are exempt. Nothing is limited when TESTING is set.

    init_rate_limits(app, limiter)
"""

import logging

from flask import current_app

logger = logging.getLogger(__name__)

DEFAULT_LOGIN_LIMIT = "10/minute"
DEFAULT_WRITE_LIMIT = "60/minute"

LIMITED_BLUEPRINTS = ("chain_rules", "custom_fields", "packages", "users")
WRITE_METHODS = ("POST", "PUT", "DELETE")


def login_limit() -> str:
    """Limit string for POST /auth/login, read per request."""
    return current_app.config.get("LOGIN_RATE_LIMIT", DEFAULT_LOGIN_LIMIT)


def init_rate_limits(app, limiter):
    if app.config.get("TESTING"):
        logger.debug("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config.get("WRITE_RATE_LIMIT", DEFAULT_WRITE_LIMIT)
    limited = [name for name in LIMITED_BLUEPRINTS if name in app.blueprints]
    for name in limited:
        limiter.limit(write_limit, methods=WRITE_METHODS)(app.blueprints[name])

    if "health" in app.blueprints:
        limiter.exempt(app.blueprints["health"])

    logger.info(
        "Rate limits: login=%s write=%s on %s",
        app.config.get("LOGIN_RATE_LIMIT", DEFAULT_LOGIN_LIMIT), write_limit, ", ".join(limited),
    )

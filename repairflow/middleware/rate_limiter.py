"""
Rate limiting for the issues API.

The Limiter is created in repairflow/__init__.py without default limits;
this module attaches one shared limit to the issues blueprint, counted per
acting user (the ``X-Username`` header) and per remote address for
anonymous calls.  Health probes are exempt.

Usage:
    from repairflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request

logger = logging.getLogger(__name__)

DEFAULT_ISSUES_LIMIT = "60/minute"


def _actor_key():
    """Bucket by acting username when present, else by client address."""
    username = request.headers.get("X-Username", "").strip()
    if username:
        return f"user:{username[:50]}"
    return request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """Attach limits after blueprints are registered; no-op under TESTING."""
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    issues_limit = app.config.get("ISSUES_RATE_LIMIT", DEFAULT_ISSUES_LIMIT)
    issues = app.blueprints.get("issues")
    if issues is not None:
        limiter.limit(issues_limit, key_func=_actor_key)(issues)

    health = app.blueprints.get("health")
    if health is not None:
        limiter.exempt(health)

    logger.info("Rate limits applied: issues=%s per actor", issues_limit)

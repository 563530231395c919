"""
Repairflow — Maintenance Issue Workflow
Acting-identity resolution for API requests.

Provides:
    - require_actor: resolve the caller from the ``X-Username`` header
    - require_role:  restrict an endpoint to a set of roles

Token issuance and verification live in the platform's auth gateway; by the
time a request reaches this service the gateway has authenticated it and
forwarded the username.  The role is always taken from the identity store,
never from the request.
"""

import functools
import logging

from flask import g, request

from repairflow.services.identity import find_identity_by_username
from repairflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

USERNAME_HEADER = "X-Username"


def require_actor(f):
    """
    Decorator: require a known acting identity.

    Sets g.current_user (Identity), g.current_username and g.current_user_role.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        username = request.headers.get(USERNAME_HEADER, "").strip()
        if not username:
            return api_error(
                E.UNAUTHENTICATED,
                f"Authentication required. Provide {USERNAME_HEADER} header.",
            )

        identity = find_identity_by_username(username)
        if identity is None:
            logger.warning("Unknown acting user: %s", username[:50])
            return api_error(E.UNAUTHENTICATED, "Unknown user")

        g.current_user = identity
        g.current_username = identity.username
        g.current_user_role = identity.role
        return f(*args, **kwargs)

    return decorated


def require_role(*roles: str):
    """
    Decorator: allow only the given roles.

    Usage:
        @require_actor
        @require_role("manager", "director", "admin")
        def list_issues(): ...
    """
    allowed = frozenset(roles)

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_role = getattr(g, "current_user_role", None)
            if not user_role:
                return api_error(E.UNAUTHENTICATED, "Authentication required")

            if user_role not in allowed:
                logger.warning(
                    "Access denied: role '%s' tried to access %s (allowed: %s)",
                    user_role, request.path, ", ".join(sorted(allowed)),
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")

            return f(*args, **kwargs)
        return decorated
    return decorator

"""
Repairflow — Maintenance Issue Workflow
HTTP blueprints and the small helpers they share.
"""

from flask import request

DEFAULT_PAGE_SIZE = 200
MAX_PAGE_SIZE = 1000


def _int_arg(name, default, *, low, high=None):
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default
    value = max(value, low)
    return min(value, high) if high is not None else value


def paginate_query(query, serialize):
    """Run ``query`` with ``?limit=&offset=`` and return a list envelope.

    Returns:
        {"items": [serialize(row), ...], "total", "limit", "offset"}
    """
    limit = _int_arg("limit", DEFAULT_PAGE_SIZE, low=1, high=MAX_PAGE_SIZE)
    offset = _int_arg("offset", 0, low=0)
    rows = query.limit(limit).offset(offset).all()
    return {
        "items": [serialize(row) for row in rows],
        "total": query.order_by(None).count(),
        "limit": limit,
        "offset": offset,
    }

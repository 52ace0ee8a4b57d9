"""Permission guards for the internal API.

Tokens are minted by the identity service; only their ``permissions`` claim is read here.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import jsonify, request
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

logger = logging.getLogger(__name__)

PURCHASE_PERMISSIONS = frozenset({"purchase.read", "purchase.create", "purchase.approve", "purchase.share"})
SUPPLY_PERMISSIONS = frozenset({"supply.read", "supply.manage"})
KNOWN_PERMISSIONS = PURCHASE_PERMISSIONS | SUPPLY_PERMISSIONS


def require_permissions(*required_permissions: str) -> Callable[..., Any]:
    unknown = set(required_permissions) - KNOWN_PERMISSIONS
    if unknown:
        raise ValueError(f"unknown permissions: {', '.join(sorted(unknown))}")
    required_set = frozenset(required_permissions)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            verify_jwt_in_request()
            missing = required_set - set(get_jwt().get("permissions", []))

            if missing:
                logger.info(
                    "user %s denied %s %s, missing %s",
                    get_jwt_identity(),
                    request.method,
                    request.path,
                    ", ".join(sorted(missing)),
                )
                return jsonify({"message": "Forbidden", "missing_permissions": sorted(missing)}), 403

            return func(*args, **kwargs)

        return wrapper

    return decorator


def current_user_id_from_token() -> int | None:
    """Numeric user id from the verified token, or None for a malformed identity."""
    raw_identity = get_jwt_identity()
    try:
        return int(raw_identity)
    except (TypeError, ValueError):
        return None

"""Acting-user resolution for audit records."""

from __future__ import annotations

from typing import Callable, Optional

from flask import g, has_app_context


def get_current_user():
    """Return the currently logged-in user from ``flask.g``."""
    if not has_app_context():
        return None
    return getattr(g, "current_user", None)


def current_user_id() -> Optional[str]:
    """Id of the logged-in user, or None outside a request or when anonymous."""
    user = get_current_user()
    if user is None or getattr(user, "id", None) is None:
        return None
    return str(user.id)


def fixed_user(user_id) -> Callable[[], Optional[str]]:
    """Resolver that always reports *user_id* (background jobs, scripts)."""
    resolved = None if user_id is None else str(user_id)

    def resolve() -> Optional[str]:
        return resolved

    return resolve

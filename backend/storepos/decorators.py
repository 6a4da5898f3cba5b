# Overview: Request identity and role decorators for API routes.

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps

from flask import current_app, g, jsonify, request

from .validation import MANAGER_ROLES, ROLES


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as supplied by the upstream gateway."""
    user_id: str
    name: str
    role: str

    @property
    def is_manager(self) -> bool:
        return self.role in MANAGER_ROLES

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "name": self.name, "role": self.role}


def _read_identity() -> Identity | None:
    prefix = current_app.config.get("IDENTITY_HEADER_PREFIX", "X-User")
    user_id = (request.headers.get(f"{prefix}-Id") or "").strip()
    name = (request.headers.get(f"{prefix}-Name") or "").strip()
    role = (request.headers.get(f"{prefix}-Role") or "").strip().lower()
    if not user_id or role not in ROLES:
        return None
    return Identity(user_id=user_id, name=name or user_id, role=role)


def require_auth(f):
    """
    Require a caller identity and expose it as g.identity.

    Authentication itself happens upstream; this only trusts the identity
    headers it forwards. Returns 401 when they are missing or the role is
    unknown.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identity = _read_identity()
        if identity is None:
            return jsonify({"error": "Authentication required"}), 401
        g.identity = identity
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require one of the given roles. Must be stacked under @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            identity = getattr(g, "identity", None)
            if identity is None:
                return jsonify({"error": "Authentication required"}), 401
            if identity.role not in roles:
                current_app.logger.warning(
                    "Role %s denied on %s %s", identity.role, request.method, request.path
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator

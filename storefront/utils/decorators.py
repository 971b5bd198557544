# ------- storefront/utils/decorators.py -------
from functools import wraps
from flask import jsonify, g
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from ..extensions import db
from ..utils.api import api_error
from ..model.user import User

ROLE_LEVEL = {"user": 1, "manager": 2, "admin": 3}
STAFF_ROLES = ("manager", "admin")


def _current_user(optional: bool = False):
    verify_jwt_in_request(optional=optional)
    uid = get_jwt_identity()
    try:
        uid = int(uid)
    except (TypeError, ValueError):
        uid = None
    return db.session.get(User, uid) if uid else None


def login_required(fn):
    """Resolves the JWT identity to a User and stores it on ``g.user``."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        u = _current_user()
        if not u:
            return jsonify(api_error("Unauthorized")), 401
        g.user = u
        return fn(*args, **kwargs)
    return wrapper


def login_optional(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        g.user = _current_user(optional=True)
        return fn(*args, **kwargs)
    return wrapper


def role_at_least(min_role: str, message: str | None = None):  # admin > manager > user
    min_level = ROLE_LEVEL[min_role]
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            u = _current_user()
            if not u:
                return jsonify(api_error("Unauthorized")), 401
            if ROLE_LEVEL.get(u.role, 0) < min_level:
                return jsonify(api_error(message or "Forbidden")), 403
            g.user = u
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def is_staff(user) -> bool:
    return bool(user) and user.role in STAFF_ROLES

from functools import wraps
from flask import g, jsonify

ADMIN_ROLE = "ADMIN"


def is_admin(user) -> bool:
    return user is not None and ADMIN_ROLE in user.role_names

def can_manage_property(user, prop) -> bool:
    """Owners manage their own listings; admins manage every listing."""
    if user is None:
        return False
    return prop.owner_user_id == user.id or is_admin(user)

def require_roles(*role_names: str):
    """
    Usage: @require_roles("LANDLORD")

    ADMIN passes every role check, so landlord-only routes stay open to moderators.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401

            if not is_admin(user) and not user.role_names.intersection(role_names):
                return jsonify(
                    error="Forbidden",
                    required_roles=list(role_names),
                ), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator

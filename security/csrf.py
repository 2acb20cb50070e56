import secrets
from flask import g, request, jsonify, current_app

CSRF_HEADER = "X-CSRF-Token"
UNSAFE_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def _cookie_name():
    return current_app.config.get("CSRF_COOKIE_NAME", "csrf_token")


def issue_csrf_token(resp):
    """Pair a fresh CSRF token with a new login; it lives as long as the session cookie."""
    token = secrets.token_urlsafe(32)
    resp.set_cookie(
        _cookie_name(),
        token,
        httponly=False,  # the client reads it and echoes it in the header
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60),
        path="/",
    )
    return resp

def clear_csrf_token(resp):
    resp.delete_cookie(_cookie_name(), path="/")
    return resp

def require_csrf():
    cookie_token = request.cookies.get(_cookie_name())
    header_token = request.headers.get(CSRF_HEADER)
    if not cookie_token or not header_token or not secrets.compare_digest(cookie_token, header_token):
        return jsonify(error="CSRF validation failed"), 403
    return None

def csrf_protect():
    # only writes made with a logged-in cookie session carry CSRF risk
    if request.method not in UNSAFE_METHODS:
        return None
    if request.path in current_app.config.get("CSRF_EXEMPT_PATHS", ()):
        return None
    if getattr(g, "user", None) is None:
        return None
    return require_csrf()

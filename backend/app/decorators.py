# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import current_app, request, jsonify, g

from .extensions import db
from .services import session_service


def extract_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    cookie_name = current_app.config.get("SESSION_COOKIE_NAME_TOKEN", "token")
    return request.cookies.get(cookie_name) or None


def require_auth(f):
    """
    Require a valid session token (Bearer header or "token" cookie).

    Sets:
    - g.current_user: the authenticated User
    - g.session_token: the plaintext token (needed by logout)

    Returns 401 when the token is missing, unknown, revoked or expired.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = extract_token()
        if not token:
            return jsonify({"error": "Access denied. No token provided."}), 401

        context = session_service.validate_session(db.session, token)
        if not context:
            return jsonify({"error": "Invalid or expired token."}), 401

        g.current_user = context.user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require the authenticated user to hold one of roles (use after @require_auth)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401
            if user.role not in roles:
                current_app.logger.warning(
                    "role check failed: user=%s role=%s needs=%s path=%s",
                    user.id, user.role, ",".join(roles), request.path,
                )
                return jsonify({
                    "error": "Insufficient permissions.",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator

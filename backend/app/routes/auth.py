# Overview: Flask API routes for authentication and user management.

# backend/app/routes/auth.py
"""
Authentication routes.

- POST /api/auth/login      public; returns token and sets the "token" cookie
- POST /api/auth/logout     revokes the presented token
- GET  /api/auth/me         any authenticated user
- POST /api/auth/register   super_admin only
- GET  /api/auth/users      super_admin only
- DELETE /api/auth/users/<id>  super_admin only (not yourself)
"""

from datetime import timedelta

from flask import Blueprint, request, jsonify, g, current_app, make_response

from ..extensions import db
from ..models import ROLE_SUPER_ADMIN
from ..services import auth_service, session_service
from ..services.auth_service import AuthError
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth, require_role, extract_token


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.authenticate(db.session, data.get("email"), data.get("password"))
        ttl = timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 24))
        _, token = session_service.create_session(db.session, user.id, ttl=ttl)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except AuthError as e:
        return jsonify({"error": str(e)}), 401
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500

    response = make_response(jsonify({
        "message": "Login successful",
        "user": user.to_dict(),
        "token": token,
    }))
    response.set_cookie(
        current_app.config.get("SESSION_COOKIE_NAME_TOKEN", "token"),
        token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite="Strict",
        max_age=int(ttl.total_seconds()),
    )
    return response


@auth_bp.post("/logout")
def logout_route():
    token = extract_token()
    try:
        if token:
            session_service.revoke_session(db.session, token)
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500

    response = make_response(jsonify({"message": "Logged out successfully."}))
    response.delete_cookie(current_app.config.get("SESSION_COOKIE_NAME_TOKEN", "token"))
    return response


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify(g.current_user.to_dict())


@auth_bp.post("/register")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def register_route():
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.create_user(
            db.session,
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            role=data.get("role"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"message": "User created successfully.", "id": user.id, "user": user.to_dict()}), 201


@auth_bp.get("/users")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def list_users_route():
    return jsonify(auth_service.list_users(db.session))


@auth_bp.delete("/users/<int:user_id>")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def delete_user_route(user_id: int):
    try:
        auth_service.delete_user(db.session, user_id=user_id, acting_user_id=g.current_user.id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except AuthError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"message": "User deleted."})

# Overview: Service-layer operations for auth; users, password hashing, login.

"""
Authentication Service

Uses bcrypt for password hashing. Two roles: super_admin and staff.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, at least one letter and one digit
- Emails are normalised (trimmed, lower-cased) before storage and lookup
- Session tokens are managed separately (see session_service.py)
"""

import logging
import re

import bcrypt
from sqlalchemy.orm import Session

from ..models import User, ROLES, ROLE_SUPER_ADMIN
from ..validation import ValidationError, ConflictError
from app.time_utils import utcnow
from .concurrency import atomic

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Raised for authentication and user-management failures."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r'[A-Za-z]', password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Hash password using bcrypt with cost factor 12 (validated first)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(session: Session, *, name: str, email: str, password: str, role: str) -> User:
    """
    Create a user.

    Raises ValidationError for missing fields, bad role or weak password,
    ConflictError when the email is taken.
    """
    name = (name or "").strip()
    email = normalize_email(email)
    if not name or not email or not password or not role:
        raise ValidationError("All fields are required.")
    if role not in ROLES:
        raise ValidationError("Invalid role.")

    password_hash = hash_password(password)

    with atomic(session):
        if session.query(User.id).filter_by(email=email).first() is not None:
            raise ConflictError("Email already in use.")
        user = User(name=name, email=email, password_hash=password_hash, role=role)
        session.add(user)

    logger.info("user %s created with role %s", user.id, role)
    return user


def authenticate(session: Session, email: str, password: str) -> User:
    """Return the user for valid credentials, else raise AuthError (same message either way)."""
    if not email or not password:
        raise ValidationError("Email and password are required.")

    user = session.query(User).filter_by(email=normalize_email(email)).first()
    if user is None or not verify_password(password, user.password_hash):
        raise AuthError("Invalid email or password.")

    user.last_login_at = utcnow()
    session.commit()
    return user


def list_users(session: Session) -> list[dict]:
    users = session.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
    return [u.to_dict() for u in users]


def delete_user(session: Session, *, user_id: int, acting_user_id: int) -> None:
    if user_id == acting_user_id:
        raise ValidationError("Cannot delete your own account.")
    with atomic(session):
        user = session.get(User, user_id)
        if user is None:
            raise AuthError("User not found.", details={"user_id": user_id})
        session.delete(user)


def ensure_default_admin(session: Session, *, name: str, email: str, password: str) -> User | None:
    """
    Create the bootstrap super admin if no super admin exists.

    Returns the new user, or None when one already exists.
    """
    existing = session.query(User).filter_by(role=ROLE_SUPER_ADMIN).first()
    if existing is not None:
        return None
    user = create_user(session, name=name, email=email, password=password, role=ROLE_SUPER_ADMIN)
    logger.warning("default super admin created: %s (change the password)", user.email)
    return user

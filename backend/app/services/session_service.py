# Overview: Service-layer operations for session; opaque login tokens.

"""
Session Token Management Service

Tokens are cryptographically secure, hashed in database, and time-limited.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_TTL_HOURS, default 24h)
- Revocable on logout
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import Session

from ..models import SessionToken, User
from app.time_utils import utcnow


DEFAULT_SESSION_TTL = timedelta(hours=24)


@dataclass
class SessionContext:
    user: User
    session: SessionToken


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy); the only copy the client gets."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    SHA-256 for storage.

    Tokens are already high-entropy, so a fast hash is sufficient (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(session: Session, user_id: int, ttl: timedelta = DEFAULT_SESSION_TTL) -> tuple[SessionToken, str]:
    """
    Create a session for user_id.

    Returns (session_record, plaintext_token); the database keeps only the hash.
    """
    user = session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")

    plaintext_token = generate_token()
    now = utcnow()
    record = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + ttl,
        is_revoked=False,
    )
    session.add(record)
    session.commit()
    return record, plaintext_token


def validate_session(session: Session, token: str) -> SessionContext | None:
    """
    Resolve a token to its user.

    None for unknown, revoked or expired tokens. Touches last_used_at.
    """
    record = session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if record is None:
        return None

    now = utcnow()
    if record.expires_at < now:
        return None

    user = record.user
    if user is None:
        return None

    record.last_used_at = now
    session.commit()
    return SessionContext(user=user, session=record)


def revoke_session(session: Session, token: str, reason: str = "User logout") -> bool:
    """Returns True if an active session was revoked."""
    record = session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if record is None:
        return False

    record.is_revoked = True
    record.revoked_at = utcnow()
    record.revoked_reason = reason
    session.commit()
    return True


def cleanup_expired_sessions(session: Session, older_than_days: int = 30) -> int:
    """Delete sessions that are expired or revoked and older than the cutoff."""
    cutoff = utcnow() - timedelta(days=older_than_days)
    deleted = session.query(SessionToken).filter(
        (SessionToken.expires_at < utcnow()) | SessionToken.is_revoked.is_(True),
        SessionToken.created_at < cutoff,
    ).delete(synchronize_session=False)
    session.commit()
    return deleted

# Overview: Service-layer operations for session; bearer token issue, validation and revocation.

"""
Session Token Management

- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute timeout of SESSION_TIMEOUT_HOURS
- Revocable on logout
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Tokens are high-entropy, so SHA-256 is sufficient (bcrypt is for passwords)
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user: User) -> tuple[SessionToken, str]:
    """
    Returns (session_record, plaintext_token). Only the hash is stored.
    """
    plaintext_token = generate_token()
    now = utcnow()
    hours = current_app.config.get("SESSION_TIMEOUT_HOURS", 24)

    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + timedelta(hours=hours),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def validate_session(token: str) -> User | None:
    """
    Returns the session's user, or None if the token is unknown, revoked,
    expired, or belongs to a deactivated account.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if session is None:
        return None
    if session.expires_at < utcnow():
        return None

    user = session.user
    if user is None or not user.is_active:
        session.is_revoked = True
        session.revoked_at = utcnow()
        db.session.commit()
        return None
    return user


def revoke_session(token: str) -> bool:
    """Returns True if an active session was revoked."""
    updated = db.session.query(SessionToken).filter(
        SessionToken.token_hash == hash_token(token),
        SessionToken.is_revoked.is_(False),
    ).update(
        {SessionToken.is_revoked: True, SessionToken.revoked_at: utcnow()},
        synchronize_session=False,
    )
    db.session.commit()
    return updated > 0


def revoke_all_user_sessions(user_id: int) -> int:
    """Revoke every active session for a user. The caller commits."""
    return db.session.query(SessionToken).filter(
        SessionToken.user_id == user_id,
        SessionToken.is_revoked.is_(False),
    ).update(
        {SessionToken.is_revoked: True, SessionToken.revoked_at: utcnow()},
        synchronize_session=False,
    )

# Overview: Bearer-token sessions for registry users; issue, check and revoke.

"""
Session tokens

A session is an opaque random token handed to the client once. Only its
SHA-256 digest is stored, so a leaked table cannot be replayed.

Lifetime rules:
- absolute: SESSION_ABSOLUTE_TIMEOUT after issue
- idle: revoked when unused for longer than SESSION_IDLE_TIMEOUT
- owner: revoked as soon as the user account is deactivated
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..errors import NotFoundError
from ..extensions import db
from ..models import SessionToken, User
from chaintrace.time_utils import utcnow

logger = logging.getLogger(__name__)

SESSION_ABSOLUTE_TIMEOUT = timedelta(days=7)
SESSION_IDLE_TIMEOUT = timedelta(hours=24)


@dataclass
class SessionContext:
    user: User
    session: SessionToken


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Tokens carry 256 bits of entropy; a plain digest is enough.
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _find_active(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter(SessionToken.token_hash == hash_token(token))
        .filter(SessionToken.is_revoked.is_(False))
        .one_or_none()
    )


def _revoke(record: SessionToken, reason: str) -> None:
    record.is_revoked = True
    record.revoked_at = utcnow()
    record.revoked_reason = reason
    db.session.commit()
    logger.info("Session %s for user %s revoked: %s", record.id, record.user_id, reason)


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """Open a session for user_id. Returns (record, plaintext token)."""
    if db.session.get(User, user_id) is None:
        raise NotFoundError("User not found")

    token = generate_token()
    issued_at = utcnow()
    record = SessionToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=issued_at,
        last_used_at=issued_at,
        expires_at=issued_at + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(record)
    db.session.commit()
    return record, token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its user, touching last_used_at.

    None for unknown, revoked or expired tokens. Idle sessions and
    sessions of deactivated users are revoked on the way out.
    """
    record = _find_active(token)
    if record is None:
        return None

    checked_at = utcnow()
    if record.expires_at < checked_at:
        return None
    if checked_at - record.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(record, "Idle timeout")
        return None

    owner = record.user
    if owner is None or not owner.is_active:
        _revoke(record, "User account deactivated")
        return None

    record.last_used_at = checked_at
    db.session.commit()
    return SessionContext(user=owner, session=record)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """False when no active session matches the token."""
    record = _find_active(token)
    if record is None:
        return False
    _revoke(record, reason)
    return True

# Overview: Service-layer operations for bearer sessions; issue, validate and revoke login tokens.

"""
Session Token Service

WHY: Stall staff log in on shared tablets at the counter. Each login gets an
opaque bearer token that expires on its own and can be revoked, either by
logout or by an Admin deactivating the account.

TENANCY: validate_session() resolves the tenant Admin once, so routes scope
orders, stalls and configuration by g.admin_id without another lookup.

SECURITY:
- 32 random bytes per token, sent to the client once
- Only the SHA-256 digest is stored (tokens are high-entropy, so no bcrypt)
- Absolute lifetime of SESSION_TIMEOUT_HOURS from login, no sliding renewal
- A deactivated account's sessions stop validating immediately
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


DEFAULT_SESSION_HOURS = 24
REASON_LOGOUT = "User logout"
REASON_DEACTIVATED = "User account deactivated"


@dataclass
class SessionContext:
    user: User
    session: SessionToken
    admin_id: int | None


def _session_lifetime() -> timedelta:
    return timedelta(hours=int(current_app.config.get("SESSION_TIMEOUT_HOURS", DEFAULT_SESSION_HOURS)))


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _active_session(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Issue a session for a user who has just authenticated.

    Returns (session_record, plaintext_token). The plaintext is never stored.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _session_lifetime(),
        user_agent=(user_agent or "")[:255] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    current_app.logger.info("Session opened for %s (%s)", user.username, user.role)
    return session, token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its user and tenant.

    None for unknown, revoked or expired tokens. A token belonging to a
    deactivated user is revoked on sight.
    """
    session = _active_session(token)
    if session is None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, REASON_DEACTIVATED)
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=session, admin_id=user.tenant_admin_id)


def revoke_session(token: str, reason: str = REASON_LOGOUT) -> bool:
    session = _active_session(token)
    if session is None:
        return False
    _revoke(session, reason)
    db.session.commit()
    return True


def revoke_user_sessions(user_id: int, reason: str = REASON_DEACTIVATED) -> int:
    """Revoke every open session of a user. Returns how many were revoked."""
    sessions = (
        db.session.query(SessionToken)
        .filter_by(user_id=user_id, is_revoked=False)
        .all()
    )
    for session in sessions:
        _revoke(session, reason)
    db.session.commit()
    return len(sessions)

"""
JWT Service — token generation, verification and session persistence.

Access token:   15 minutes (JWT_ACCESS_EXPIRES)
Refresh token:  7 days     (JWT_REFRESH_EXPIRES)
Recovery token: 1 hour     (RECOVERY_TOKEN_EXPIRES)
Algorithm:      HS256

Access payload:
{
    "sub": "<user_id>",
    "role": "<role code>",
    "type": "access",
    "iat": ..., "exp": ..., "jti": ...
}

Only SHA-256 hashes of refresh and recovery tokens are stored.
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from grantdesk.models import db
from grantdesk.models.auth import Session


# ─── Defaults ────────────────────────────────────────────────
DEFAULT_ACCESS_EXPIRES = 900       # 15 minutes
DEFAULT_REFRESH_EXPIRES = 604800   # 7 days
DEFAULT_RECOVERY_EXPIRES = 3600    # 1 hour
ALGORITHM = "HS256"


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


def _get_refresh_expires():
    return current_app.config.get("JWT_REFRESH_EXPIRES", DEFAULT_REFRESH_EXPIRES)


def get_recovery_expires():
    return current_app.config.get("RECOVERY_TOKEN_EXPIRES", DEFAULT_RECOVERY_EXPIRES)


def _encode(user_id: int, token_type: str, lifetime: int, **claims) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=lifetime)
    payload = {
        # PyJWT requires "sub" to be a string
        "sub": str(user_id),
        "type": token_type,
        "iat": now,
        "exp": expires_at,
        "jti": str(uuid.uuid4()),
        **claims,
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM), expires_at


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def generate_access_token(user_id: int, role_code: str | None) -> str:
    token, _ = _encode(user_id, "access", get_access_expires(), role=role_code)
    return token


def generate_refresh_token(user_id: int) -> tuple[str, str, datetime]:
    """Returns (raw_token, token_hash, expires_at)."""
    raw_token, expires_at = _encode(user_id, "refresh", _get_refresh_expires())
    return raw_token, hash_token(raw_token), expires_at


def generate_token_pair(user_id: int, role_code: str | None) -> dict:
    access_token = generate_access_token(user_id, role_code)
    refresh_token, token_hash, expires_at = generate_refresh_token(user_id)
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_hash": token_hash,
        "expires_at": expires_at,
        "token_type": "Bearer",
        "expires_in": get_access_expires(),
    }


def generate_recovery_token(user_id: int) -> tuple[str, str, datetime]:
    """Returns (raw_token, token_hash, expires_at) for a password reset."""
    raw_token, expires_at = _encode(user_id, "recovery", get_recovery_expires())
    return raw_token, hash_token(raw_token), expires_at


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_token(token: str, expected_type: str = "access") -> dict:
    """
    Decode and verify a JWT.

    Raises jwt exceptions on failure (ExpiredSignatureError, InvalidTokenError).
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected {expected_type} token, got {payload.get('type')}")
    return payload


def decode_access_token(token: str) -> dict:
    return decode_token(token, expected_type="access")


def decode_refresh_token(token: str) -> dict:
    return decode_token(token, expected_type="refresh")


def decode_recovery_token(token: str) -> dict:
    return decode_token(token, expected_type="recovery")


def hash_token(token: str) -> str:
    """SHA-256 hash of a token (never store raw tokens)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ═══════════════════════════════════════════════════════════════
# Session Management
# ═══════════════════════════════════════════════════════════════
def create_session(
    user_id: int,
    token_hash: str,
    ip_address: str | None,
    user_agent: str | None,
    expires_at: datetime,
) -> Session:
    session = Session(
        user_id=user_id,
        token_hash=token_hash,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500],
        expires_at=expires_at,
    )
    db.session.add(session)
    db.session.commit()
    return session


def revoke_session_by_token(token_hash: str) -> bool:
    """Revoke the active session holding ``token_hash``; False if none."""
    session = Session.query.filter_by(token_hash=token_hash, is_active=True).first()
    if session:
        session.is_active = False
        db.session.commit()
        return True
    return False


def revoke_all_user_sessions(user_id: int) -> None:
    Session.query.filter_by(user_id=user_id, is_active=True).update({"is_active": False})
    db.session.commit()


def rotate_session(
    old_session: Session,
    user_id: int,
    new_token_hash: str,
    new_expires_at: datetime,
    ip_address: str | None,
    user_agent: str | None,
) -> Session:
    """Invalidate the old session and create its replacement in one commit."""
    old_session.is_active = False
    old_session.last_used_at = datetime.now(timezone.utc)

    new_session = Session(
        user_id=user_id,
        token_hash=new_token_hash,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500],
        expires_at=new_expires_at,
    )
    db.session.add(new_session)
    db.session.commit()
    return new_session


def get_active_session_by_token(user_id: int, token_hash: str) -> Session | None:
    return Session.query.filter_by(
        user_id=user_id, token_hash=token_hash, is_active=True
    ).first()

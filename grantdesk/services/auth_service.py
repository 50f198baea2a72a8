"""
Auth Service — sign-in, sign-up, sign-out, sessions and password recovery.

Results of the user-facing calls (``sign_in`` / ``sign_up``) are returned as
``AuthResult(success, user, tokens, error)`` so the HTTP layer and scripts
can report failures without catching exceptions; lower-level helpers raise
``AuthError`` / ``ValidationError``.

Auth state changes ("SIGNED_IN", "SIGNED_OUT", "TOKEN_REFRESHED",
"PASSWORD_RECOVERY", "USER_UPDATED") are broadcast to callbacks registered
with ``on_auth_state_change``.

Recovery links carry the tokens in the URL fragment:

    https://app.example/reset-password#type=recovery&access_token=...&refresh_token=...
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import parse_qs, urlencode, urlsplit

import jwt as pyjwt
from email_validator import EmailNotValidError, validate_email
from flask import current_app

from grantdesk.core.exceptions import AuthError, ValidationError
from grantdesk.models import db
from grantdesk.models.auth import RecoveryToken, Role, User
from grantdesk.services import jwt_service
from grantdesk.services.email_service import EmailService
from grantdesk.services.permission_service import DEFAULT_ROLES, invalidate_cache
from grantdesk.utils.crypto import MIN_PASSWORD_LENGTH, hash_password, verify_password

logger = logging.getLogger(__name__)

ADMIN_ROLE_CODE = "ADMIN"
INVALID_CREDENTIALS = "Email ou mot de passe incorrect"

AuthCallback = Callable[[str, Optional[dict]], None]

_listeners: list[AuthCallback] = []
_listeners_lock = threading.Lock()


@dataclass
class AuthResult:
    success: bool
    user: Optional[User] = None
    tokens: dict = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        d = {"success": self.success}
        if self.user is not None:
            d["user"] = self.user.to_dict(include_role=True)
        if self.tokens:
            d.update({k: v for k, v in self.tokens.items() if k in (
                "access_token", "refresh_token", "token_type", "expires_in",
            )})
        if self.error:
            d["error"] = self.error
        return d


# ═══════════════════════════════════════════════════════════════
# Auth state callbacks
# ═══════════════════════════════════════════════════════════════
def on_auth_state_change(callback: AuthCallback) -> Callable[[], None]:
    """Register ``callback(event, payload)``; returns an unsubscribe function."""
    with _listeners_lock:
        _listeners.append(callback)

    def unsubscribe():
        with _listeners_lock:
            if callback in _listeners:
                _listeners.remove(callback)

    return unsubscribe


def _notify(event: str, payload: Optional[dict] = None) -> None:
    with _listeners_lock:
        listeners = list(_listeners)
    for callback in listeners:
        try:
            callback(event, payload)
        except Exception:
            logger.exception("Auth state callback failed for event %s", event)


# ═══════════════════════════════════════════════════════════════
# Validation helpers
# ═══════════════════════════════════════════════════════════════
def normalize_email(email: str) -> str:
    try:
        return validate_email((email or "").strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError as e:
        raise ValidationError(f"Email invalide : {e}", details={"email": "invalid"}) from None


def validate_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Le mot de passe doit contenir au moins {MIN_PASSWORD_LENGTH} caractères",
            details={"password": "too short"},
        )


def ensure_default_roles() -> dict[str, Role]:
    """Create any missing default role and return all roles by code."""
    roles = {r.code: r for r in Role.query.all()}
    created = 0
    for definition in DEFAULT_ROLES:
        if definition["code"] in roles:
            continue
        role = Role(
            code=definition["code"],
            name=definition["name"],
            description=definition["description"],
            color=definition["color"],
            permissions=definition["permissions"],
            is_active=True,
        )
        db.session.add(role)
        roles[definition["code"]] = role
        created += 1
    if created:
        db.session.commit()
        logger.info("Created %d default roles", created)
    return roles


def _role_code(user: User) -> Optional[str]:
    return user.role.code if user.role is not None else None


def _open_session(user: User, ip_address=None, user_agent=None) -> dict:
    tokens = jwt_service.generate_token_pair(user.id, _role_code(user))
    jwt_service.create_session(
        user.id, tokens["token_hash"], ip_address, user_agent, tokens["expires_at"]
    )
    return tokens


# ═══════════════════════════════════════════════════════════════
# Sign-in / sign-up / sign-out
# ═══════════════════════════════════════════════════════════════
def authenticate(email: str, password: str) -> User:
    """Return the active user matching the credentials or raise AuthError."""
    user = User.query.filter_by(email=(email or "").strip().lower()).first()
    if user is None or not verify_password(password or "", user.password_hash):
        raise AuthError(INVALID_CREDENTIALS)
    if not user.is_active:
        raise AuthError("Ce compte est désactivé", status_code=403)
    return user


def sign_in(email: str, password: str, ip_address=None, user_agent=None) -> AuthResult:
    try:
        user = authenticate(email, password)
    except AuthError as e:
        logger.info("Sign-in failed for %s", email, extra={"event_type": "auth_failed"})
        return AuthResult(success=False, error=e.message)

    tokens = _open_session(user, ip_address, user_agent)
    logger.info("User %s signed in", user.id, extra={"event_type": "signed_in"})
    _notify("SIGNED_IN", {"user_id": user.id})
    return AuthResult(success=True, user=user, tokens=tokens)


def sign_up(email: str, password: str, profile: Optional[dict] = None,
            ip_address=None, user_agent=None) -> AuthResult:
    """Create an account. The very first account becomes Administrator."""
    profile = profile or {}
    try:
        email = normalize_email(email)
        validate_password(password)
    except ValidationError as e:
        return AuthResult(success=False, error=str(e))

    if User.query.filter_by(email=email).first() is not None:
        return AuthResult(success=False, error="Un compte existe déjà avec cet email")

    roles = ensure_default_roles()
    is_first = User.query.count() == 0
    role_code = ADMIN_ROLE_CODE if is_first else current_app.config.get(
        "SIGNUP_DEFAULT_ROLE", "READ_ONLY"
    )
    role = roles.get(role_code) or roles["READ_ONLY"]

    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=(profile.get("first_name") or "").strip(),
        last_name=(profile.get("last_name") or "").strip(),
        profession=(profile.get("profession") or "").strip() or None,
        employee_id=(profile.get("employee_id") or "").strip() or None,
        role_id=role.id,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()

    tokens = _open_session(user, ip_address, user_agent)
    logger.info(
        "User %s signed up with role %s", user.id, role.code, extra={"event_type": "signed_up"}
    )
    _notify("SIGNED_IN", {"user_id": user.id})
    return AuthResult(success=True, user=user, tokens=tokens)


def sign_out(refresh_token: Optional[str]) -> bool:
    if not refresh_token:
        return False
    revoked = jwt_service.revoke_session_by_token(jwt_service.hash_token(refresh_token))
    if revoked:
        _notify("SIGNED_OUT", None)
    return revoked


def get_session(access_token: Optional[str]) -> Optional[dict]:
    """Current session for an access token, or None when absent/invalid."""
    if not access_token:
        return None
    try:
        payload = jwt_service.decode_access_token(access_token)
    except pyjwt.InvalidTokenError:
        return None
    user = db.session.get(User, int(payload["sub"]))
    if user is None or not user.is_active:
        return None
    return {
        "user": user.to_dict(),
        "role": user.role.to_dict() if user.role else None,
        "expires_at": datetime.fromtimestamp(payload["exp"], tz=timezone.utc).isoformat(),
    }


def refresh(refresh_token: str, ip_address=None, user_agent=None) -> dict:
    """Rotate a refresh token; returns the new token pair."""
    try:
        payload = jwt_service.decode_refresh_token(refresh_token or "")
    except pyjwt.ExpiredSignatureError:
        raise AuthError("Session expirée, veuillez vous reconnecter") from None
    except pyjwt.InvalidTokenError:
        raise AuthError("Jeton de rafraîchissement invalide") from None

    user_id = int(payload["sub"])
    session = jwt_service.get_active_session_by_token(
        user_id, jwt_service.hash_token(refresh_token)
    )
    if session is None or session.is_expired:
        raise AuthError("Session révoquée ou expirée")
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise AuthError("Ce compte est désactivé", status_code=403)

    tokens = jwt_service.generate_token_pair(user.id, _role_code(user))
    jwt_service.rotate_session(
        session, user.id, tokens["token_hash"], tokens["expires_at"], ip_address, user_agent
    )
    _notify("TOKEN_REFRESHED", {"user_id": user.id})
    return tokens


# ═══════════════════════════════════════════════════════════════
# Password recovery
# ═══════════════════════════════════════════════════════════════
def build_recovery_link(redirect_url: str, access_token: str, refresh_token: str) -> str:
    fragment = urlencode({
        "type": "recovery",
        "access_token": access_token,
        "refresh_token": refresh_token,
    })
    return f"{redirect_url.split('#', 1)[0]}#{fragment}"


def request_password_reset(email: str, redirect_url: str) -> Optional[str]:
    """Issue a recovery link and mail it; None when no such account exists.

    Callers must answer identically either way so account existence
    is not revealed.
    """
    try:
        email = normalize_email(email)
    except ValidationError:
        return None
    user = User.query.filter_by(email=email, is_active=True).first()
    if user is None:
        logger.info("Password reset requested for unknown email")
        return None

    access_token, token_hash, expires_at = jwt_service.generate_recovery_token(user.id)
    refresh_token, _, _ = jwt_service.generate_refresh_token(user.id)
    db.session.add(RecoveryToken(user_id=user.id, token_hash=token_hash, expires_at=expires_at))
    db.session.commit()

    link = build_recovery_link(redirect_url, access_token, refresh_token)
    EmailService.send_from_template(
        to_email=user.email,
        to_name=user.full_name,
        template_name="password_recovery",
        context={
            "name": user.full_name,
            "link": link,
            "expires_minutes": jwt_service.get_recovery_expires() // 60,
        },
    )
    logger.info("Recovery link issued for user %s", user.id, extra={"event_type": "password_recovery"})
    _notify("PASSWORD_RECOVERY", {"user_id": user.id})
    return link


def parse_recovery_fragment(value: str) -> dict:
    """Extract the tokens of a recovery URL or bare fragment.

    Raises AuthError unless the fragment says ``type=recovery`` and carries
    both tokens.
    """
    fragment = urlsplit(value).fragment if "#" in (value or "") else (value or "")
    params = {k: v[0] for k, v in parse_qs(fragment.lstrip("#")).items()}
    if params.get("type") != "recovery":
        raise AuthError("Lien de réinitialisation invalide")
    if not params.get("access_token") or not params.get("refresh_token"):
        raise AuthError("Lien de réinitialisation incomplet")
    return {"access_token": params["access_token"], "refresh_token": params["refresh_token"]}


def reset_password(fragment: str, new_password: str, ip_address=None, user_agent=None) -> AuthResult:
    """Exchange a recovery fragment for a new password and a fresh session.

    Every previous session of the user is revoked.
    """
    validate_password(new_password)
    tokens = parse_recovery_fragment(fragment)
    try:
        payload = jwt_service.decode_recovery_token(tokens["access_token"])
        refresh_payload = jwt_service.decode_refresh_token(tokens["refresh_token"])
    except pyjwt.ExpiredSignatureError:
        raise AuthError("Le lien de réinitialisation a expiré") from None
    except pyjwt.InvalidTokenError:
        raise AuthError("Lien de réinitialisation invalide") from None
    if payload["sub"] != refresh_payload["sub"]:
        raise AuthError("Lien de réinitialisation invalide")

    record = RecoveryToken.query.filter_by(
        token_hash=jwt_service.hash_token(tokens["access_token"])
    ).first()
    if record is None or not record.is_usable or str(record.user_id) != payload["sub"]:
        raise AuthError("Le lien de réinitialisation a déjà été utilisé ou a expiré")

    user = db.session.get(User, record.user_id)
    if user is None or not user.is_active:
        raise AuthError("Ce compte est désactivé", status_code=403)

    user.password_hash = hash_password(new_password)
    record.used_at = datetime.now(timezone.utc)
    db.session.commit()
    jwt_service.revoke_all_user_sessions(user.id)

    expires_at = datetime.fromtimestamp(refresh_payload["exp"], tz=timezone.utc)
    jwt_service.create_session(
        user.id, jwt_service.hash_token(tokens["refresh_token"]), ip_address, user_agent, expires_at
    )
    access_token = jwt_service.generate_access_token(user.id, _role_code(user))
    invalidate_cache(user.id)
    logger.info("Password reset for user %s", user.id, extra={"event_type": "password_reset"})
    _notify("USER_UPDATED", {"user_id": user.id})
    return AuthResult(
        success=True,
        user=user,
        tokens={
            "access_token": access_token,
            "refresh_token": tokens["refresh_token"],
            "token_type": "Bearer",
            "expires_in": jwt_service.get_access_expires(),
        },
    )


def change_password(user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password or "", user.password_hash):
        raise AuthError("Mot de passe actuel incorrect")
    validate_password(new_password)
    user.password_hash = hash_password(new_password)
    db.session.commit()
    _notify("USER_UPDATED", {"user_id": user.id})

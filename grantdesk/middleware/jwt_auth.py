"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

    Authorization: Bearer <access token>  →  g.jwt_user_id, g.jwt_role

A missing, expired or invalid token leaves ``g.jwt_user_id`` as None; the
route decorators in ``permission_required`` answer 401 for protected routes.
"""

import jwt as pyjwt
from flask import g, request

from grantdesk.services.jwt_service import decode_access_token

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/sign-in",
    "/api/v1/auth/sign-up",
    "/api/v1/auth/refresh",
    "/api/v1/auth/password-reset",
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_role = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
        except pyjwt.InvalidTokenError:
            # Expired tokens included; protected routes answer 401
            return
        g.jwt_user_id = int(payload["sub"])
        g.jwt_role = payload.get("role")

"""
FastAPI JWT authentication dependency.

Protected routes declare `user: CurrentUser = Depends(get_current_user)`;
template management additionally uses `Depends(require_admin)`.
The middleware in app_server.py also guards every /api/* route (except the
public ones) at the transport level so unprotected route definitions cannot
slip through.

Tokens are issued elsewhere. They are HS256-signed with JWT_SECRET and carry
the user's id (`id`, or `sub` as a fallback), `role` and `email`.
"""

from __future__ import annotations

from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

_bearer = HTTPBearer(auto_error=True)

# Role that manages templates and reads every certificate. Independent of
# Settings.restricted_role, which only decides who may not issue certificates.
ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str = "user"
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def decode_access_token(token: str, secret: str, algorithm: str = "HS256") -> dict:
    """
    Decode and validate an access token. Raises jwt.InvalidTokenError (or a
    subclass) on failure, including a token without a user id.
    """
    if not secret:
        raise jwt.InvalidTokenError("JWT_SECRET is not set, cannot validate token.")
    payload = jwt.decode(token, secret, algorithms=[algorithm], options={"verify_aud": False})
    if not (payload.get("id") or payload.get("sub")):
        raise jwt.InvalidTokenError("Token carries no user id.")
    return payload


def user_from_claims(payload: dict) -> CurrentUser:
    return CurrentUser(
        id=str(payload.get("id") or payload.get("sub")),
        role=str(payload.get("role") or "user"),
        email=payload.get("email"),
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(_bearer),
) -> CurrentUser:
    """
    Decode and validate the Bearer token. Raises HTTP 401 on any validation
    failure.
    """
    settings = request.app.state.settings
    try:
        payload = decode_access_token(credentials.credentials, settings.jwt_secret, settings.jwt_algorithm)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {exc}",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_from_claims(payload)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required.")
    return user

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from lexdraft.config import settings


_bearer_scheme = HTTPBearer(auto_error=False)
_SUPPORTED_ALGORITHMS = ["HS256"]


def _auth_unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _auth_misconfigured(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


def decode_and_validate_supabase_token(token: str) -> dict[str, Any]:
    secret = str(settings.supabase_jwt_secret or "").strip()
    if not secret:
        raise _auth_misconfigured("Auth is enabled but SUPABASE_JWT_SECRET is not configured.")

    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise _auth_unauthorized("Malformed JWT header.") from exc

    algorithm = header.get("alg")
    if algorithm not in _SUPPORTED_ALGORITHMS:
        raise _auth_unauthorized(f"Unsupported JWT signing algorithm '{algorithm}'.")

    audience = str(settings.supabase_jwt_audience or "").strip()
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=_SUPPORTED_ALGORITHMS,
            audience=audience or None,
            options={"verify_aud": bool(audience)},
        )
    except ExpiredSignatureError as exc:
        raise _auth_unauthorized("Token has expired.") from exc
    except JWTError as exc:
        raise _auth_unauthorized(f"Invalid token: {exc}") from exc

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise _auth_unauthorized("Token does not identify a user (missing sub claim).")

    return claims


def require_authenticated_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> dict[str, Any] | None:
    if not settings.auth_enabled:
        return None

    if credentials is None:
        raise _auth_unauthorized("Missing bearer token.")
    if credentials.scheme.lower() != "bearer":
        raise _auth_unauthorized("Unsupported authorization scheme.")

    token = credentials.credentials.strip()
    if not token:
        raise _auth_unauthorized("Missing bearer token.")

    return decode_and_validate_supabase_token(token)


def resolve_user_id(claims: dict[str, Any] | None, fallback_user_id: str | None = None) -> str:
    """Return the caller's user id, preferring the verified token subject.

    With auth disabled there are no claims, so handlers pass the user id the
    client supplied in the request body.
    """
    if claims is not None:
        subject = claims.get("sub")
        if isinstance(subject, str) and subject.strip():
            return subject.strip()

    candidate = (fallback_user_id or "").strip()
    if not candidate:
        raise _auth_unauthorized("User not authenticated.")
    return candidate

"""
Admin authorization for mutating routes.
- Signed session tokens with itsdangerous, carrying the user id
- Role lookup in the user_roles table
- FastAPI dependency require_admin()
"""
import os
from typing import Optional

from fastapi import Cookie, Depends, Header, HTTPException
from itsdangerous import BadData, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from .config import get_session_max_age
from .database.db import get_db
from .repository import BookingRepository

ADMIN_ROLE = "admin"


# ----- Signed session -----
def _get_serializer() -> URLSafeTimedSerializer:
    secret = os.getenv("SECRET_KEY", "roombook-insecure-default-key-change-me")
    return URLSafeTimedSerializer(secret, salt="user-session")


def create_session_token(user_id: str) -> str:
    return _get_serializer().dumps(user_id)


def verify_session_token(token: str, max_age_seconds: Optional[int] = None) -> str:
    """Return the user id if the token is valid, raise otherwise."""
    if max_age_seconds is None:
        max_age_seconds = get_session_max_age()
    return _get_serializer().loads(token, max_age=max_age_seconds)


def _extract_token(authorization: Optional[str], session: Optional[str]) -> Optional[str]:
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    return session


# ----- FastAPI dependencies -----
def get_current_user(
    authorization: Optional[str] = Header(default=None),
    session: Optional[str] = Cookie(default=None),
) -> str:
    token = _extract_token(authorization, session)
    if not token:
        raise HTTPException(status_code=401, detail="Sign in required.")
    try:
        return verify_session_token(token)
    except BadData:
        raise HTTPException(status_code=401, detail="Session expired or invalid.")


def require_admin(
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> str:
    """Dependency for admin-only routes: signed session plus the admin role."""
    if BookingRepository(db).get_role(user_id) != ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Only admins can manage rooms and bookings.")
    return user_id

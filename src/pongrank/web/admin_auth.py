"""Admin authentication for the mutation endpoints of the JSON API.

Two ways in:

- a session cookie set by POST /api/admin/login (Starlette SessionMiddleware)
- ``Authorization: Bearer <ADMIN_API_TOKEN>`` when a token is configured

Passwords are stored as PBKDF2-HMAC-SHA256 hashes.
"""

from __future__ import annotations

import hashlib
import hmac
import os
from datetime import datetime
from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from pongrank.config import settings
from pongrank.db.models import User
from pongrank.db.session import get_db

PBKDF2_ALGORITHM = "sha256"
PBKDF2_ITERATIONS = 390_000
SALT_SIZE = 16

ADMIN_SESSION_KEY = "admin_user_id"


def hash_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Hash a plaintext password using PBKDF2-HMAC-SHA256."""
    if not password:
        raise ValueError("Password cannot be empty")

    salt = os.urandom(SALT_SIZE).hex()
    derived = hashlib.pbkdf2_hmac(
        PBKDF2_ALGORITHM,
        password.encode("utf-8"),
        bytes.fromhex(salt),
        iterations,
    ).hex()
    return f"pbkdf2_{PBKDF2_ALGORITHM}${iterations}${salt}${derived}"


def verify_password(password: str, stored_hash: str) -> bool:
    """Verify a plaintext password against a stored PBKDF2 hash."""
    try:
        scheme, iter_raw, salt_hex, expected_hex = stored_hash.split("$", 3)
        if scheme != f"pbkdf2_{PBKDF2_ALGORITHM}":
            return False
        actual_hex = hashlib.pbkdf2_hmac(
            PBKDF2_ALGORITHM,
            password.encode("utf-8"),
            bytes.fromhex(salt_hex),
            int(iter_raw),
        ).hex()
        return hmac.compare_digest(actual_hex, expected_hex)
    except ValueError:
        return False


def authenticate_admin(db: Session, username: str, password: str) -> Optional[User]:
    """Return the active admin user when the credentials are valid."""
    normalized = username.strip().lower()
    user = db.scalars(select(User).where(User.username == normalized)).first()
    if not user or not user.is_active or not user.is_admin:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def create_or_update_admin_user(
    db: Session,
    username: str,
    password: str,
    is_active: bool = True,
) -> User:
    """Create a new admin user, or update an existing one by username."""
    normalized = username.strip().lower()
    if not normalized:
        raise ValueError("Username cannot be empty")

    user = db.scalars(select(User).where(User.username == normalized)).first()
    password_hash = hash_password(password)
    if user:
        user.password_hash = password_hash
        user.is_active = is_active
        user.is_admin = True
    else:
        user = User(
            username=normalized,
            password_hash=password_hash,
            is_admin=True,
            is_active=is_active,
        )
        db.add(user)
    db.flush()
    return user


def mark_admin_login(db: Session, user: User) -> None:
    """Record login timestamp for auditability."""
    user.last_login_at = datetime.utcnow()
    db.flush()


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def current_admin_user(request: Request, db: Session) -> Optional[User]:
    """The admin logged in through the session cookie, if any."""
    user_id = request.session.get(ADMIN_SESSION_KEY)
    if not user_id:
        return None
    return db.scalars(
        select(User).where(
            User.id == user_id,
            User.is_active.is_(True),
            User.is_admin.is_(True),
        )
    ).first()


def require_admin(request: Request, db: Session = Depends(get_db)) -> None:
    """
    FastAPI dependency guarding admin-only endpoints.

    Raises:
        HTTPException: 401 when neither a valid token nor an admin session is present
    """
    token = _bearer_token(request)
    if token and settings.admin_api_token and hmac.compare_digest(token, settings.admin_api_token):
        return
    if current_admin_user(request, db) is not None:
        return
    raise HTTPException(status_code=401, detail="Admin authentication required")

"""
Bearer Token Authentication

Resolves ``Authorization: Bearer <token>`` to a user identity by verifying an
HS256 session JWT. Token lifetime is governed here alone; the client idle
timer in session_guard never invalidates a token.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta

import jwt

from .errors import AuthError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class UserIdentity:
    user_id: str
    email: str = ""
    name: str = ""


def _get_jwt_secret() -> str:
    val = os.getenv("JWT_SECRET", "")
    if not val:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate a random secret string and set it in .env or as an environment variable."
        )
    return val


def _get_jwt_expiry_hours() -> int:
    return int(os.getenv("JWT_EXPIRY_HOURS", "168"))  # 7 days default


def create_session_jwt(user_id: str, email: str = "", name: str = "") -> str:
    """
    Create a JWT for session authentication.

    Args:
        user_id: The user UUID
        email: User's email
        name: User's display name

    Returns:
        Encoded JWT string
    """
    payload = {
        "sub": user_id,
        "email": email,
        "name": name,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=_get_jwt_expiry_hours()),
    }
    return jwt.encode(payload, _get_jwt_secret(), algorithm=JWT_ALGORITHM)


def verify_session_jwt(token: str) -> Optional[UserIdentity]:
    """
    Verify a session JWT and extract the user.

    Returns:
        UserIdentity if valid; None if invalid/expired
    """
    try:
        payload = jwt.decode(token, _get_jwt_secret(), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("JWT expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"JWT invalid: {e}")
        return None

    if not payload.get("sub"):
        return None
    return UserIdentity(
        user_id=payload["sub"],
        email=payload.get("email", ""),
        name=payload.get("name", ""),
    )


class SessionAuthenticator:
    """Auth collaborator: opaque bearer token -> UserIdentity."""

    def __init__(self, verifier=verify_session_jwt):
        self._verify = verifier

    def resolve(self, authorization: Optional[str]) -> UserIdentity:
        """
        Resolve an Authorization header value.

        Raises:
            AuthError: header missing, malformed, or token rejected
        """
        if not authorization or not authorization.strip():
            raise AuthError("Authorization required")

        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthError("Invalid token")

        user = self._verify(token.strip())
        if user is None:
            raise AuthError("Invalid token")
        return user

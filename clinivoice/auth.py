"""
Clinivoice Backend: Bearer Token Authentication
================================================

What:  Issues and verifies HS256 JWTs and resolves the calling user.
How:   PyJWT for encode/decode; FastAPI's HTTPBearer extracts the header.
       The token carries `sub` (users.id as a string) and `role`; the user row
       is always reloaded so a lock or role change applies immediately.
Who:   Every /api route depends on get_current_user. create_access_token is
       used by the login layer (deployed separately) and by the test suite.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from clinivoice.config import settings
from clinivoice.database import get_db_session
from clinivoice.exceptions import AuthenticationError
from clinivoice.models.user import User

logger = logging.getLogger(__name__)

# auto_error=False: a missing header is reported through AuthenticationError
# so it gets the same JSON body as every other 401.
bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(
    user_id: int,
    role: str,
    expires_in: Optional[timedelta] = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + (expires_in or timedelta(minutes=settings.jwt_expiry_minutes)),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> int:
    """
    Validates `token` and returns the users.id it names.

    Raises:
        AuthenticationError: bad signature, expired, or malformed subject
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.PyJWTError:
        raise AuthenticationError("Invalid token")

    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError("Invalid token")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")

    user_pk = decode_access_token(credentials.credentials)
    user = await db.get(User, user_pk)
    if user is None:
        logger.warning("Token subject %s does not match any user", user_pk)
        raise AuthenticationError("Invalid token")
    return user

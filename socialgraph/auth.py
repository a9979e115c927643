"""
Bearer-token authentication.

Tokens are HS256 JWTs issued by the auth service and carry the numeric user
id in the `userId` claim. The signature is verified on every request; the
handlers only ever see a typed CurrentUser.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from socialgraph.config import settings

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    user_id: int


class InvalidToken(Exception):
    pass


def decode_token(token: str) -> CurrentUser:
    """Verify `token` and extract the caller's user id."""
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as exc:
        raise InvalidToken("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise InvalidToken("Invalid token") from exc

    raw = claims.get(settings.jwt_user_claim)
    # bool is an int subclass; a float id like 7.0 is accepted, 7.5 is not
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise InvalidToken("User ID not found in token")
    if isinstance(raw, float) and not raw.is_integer():
        raise InvalidToken("Invalid user ID value")
    user_id = int(raw)
    if user_id <= 0:
        raise InvalidToken("Invalid user ID value")
    return CurrentUser(user_id=user_id)


def issue_token(user_id: int, **extra_claims) -> str:
    """Mint a token the way the auth service does (used by tests and seeding)."""
    payload = {settings.jwt_user_claim: user_id, **extra_claims}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> CurrentUser:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
        )
    try:
        return decode_token(credentials.credentials)
    except InvalidToken as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)
        ) from exc


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[CurrentUser]:
    """Like get_current_user, but anonymous callers get None instead of 401."""
    if credentials is None:
        return None
    return await get_current_user(credentials)

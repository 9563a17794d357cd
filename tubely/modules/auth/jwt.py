"""JWT bearer token handling for authentication."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel

from tubely.core.context import AppContext, get_context

ALGORITHM = "HS256"
TOKEN_TYPE_ACCESS = "access"
TOKEN_ISSUER = "tubely-access"


class MissingTokenError(Exception):
    """Raised when a request carries no bearer token."""


class TokenPayload(BaseModel):
    """JWT token payload structure."""

    sub: str  # User ID
    exp: datetime
    iat: datetime
    type: str
    jti: str


def create_access_token(
    user_id: uuid.UUID,
    secret: str,
    expires_delta: timedelta = timedelta(hours=1),
) -> str:
    """Create a signed access token for ``user_id``.

    Args:
        user_id: User UUID
        secret: HMAC signing secret
        expires_delta: Token lifetime

    Returns:
        Encoded token
    """
    now = datetime.now(timezone.utc)
    payload = {
        "iss": TOKEN_ISSUER,
        "sub": str(user_id),
        "exp": now + expires_delta,
        "iat": now,
        "type": TOKEN_TYPE_ACCESS,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> Optional[TokenPayload]:
    """Decode a JWT token and check its signature and expiry.

    Returns:
        Decoded payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            issuer=TOKEN_ISSUER,
        )
        return TokenPayload(
            sub=payload["sub"],
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            type=payload["type"],
            jti=payload["jti"],
        )
    except (JWTError, KeyError):
        return None


def validate_token(token: str, secret: str, expected_type: str = TOKEN_TYPE_ACCESS) -> Optional[TokenPayload]:
    """Validate a JWT token.

    Args:
        token: Encoded JWT token
        secret: HMAC signing secret
        expected_type: Expected token type

    Returns:
        Decoded payload if valid, None otherwise
    """
    payload = decode_token(token, secret)
    if payload is None:
        return None
    if payload.type != expected_type:
        return None
    if payload.exp < datetime.now(timezone.utc):
        return None
    return payload


def get_user_id_from_token(token: str, secret: str) -> Optional[uuid.UUID]:
    """Extract the user ID from a valid access token."""
    payload = validate_token(token, secret)
    if payload is None:
        return None
    try:
        return uuid.UUID(payload.sub)
    except ValueError:
        return None


def get_bearer_token(headers: Mapping[str, str]) -> str:
    """Return the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        MissingTokenError: If the header is absent or not a bearer credential
    """
    authorization = headers.get("authorization") or headers.get("Authorization")
    if not authorization:
        raise MissingTokenError("Authorization header is missing")

    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise MissingTokenError("Authorization header is not a bearer token")
    return token


# FastAPI dependencies
async def get_current_user_id(
    request: Request,
    context: AppContext = Depends(get_context),
) -> uuid.UUID:
    """Get the authenticated user's ID from the bearer token.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    try:
        token = get_bearer_token(request.headers)
    except MissingTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Couldn't find JWT: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = get_user_id_from_token(token, context.settings.SECRET_KEY)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Couldn't validate JWT",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id

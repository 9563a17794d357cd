"""Authentication module."""

from tubely.modules.auth.jwt import (
    MissingTokenError,
    TokenPayload,
    create_access_token,
    decode_token,
    get_bearer_token,
    get_current_user_id,
    get_user_id_from_token,
    validate_token,
)

__all__ = [
    "MissingTokenError",
    "TokenPayload",
    "create_access_token",
    "decode_token",
    "get_bearer_token",
    "get_current_user_id",
    "get_user_id_from_token",
    "validate_token",
]

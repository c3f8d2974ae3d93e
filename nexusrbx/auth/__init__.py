"""Authentication package."""

from nexusrbx.auth.dependencies import (
    CurrentUser,
    ReadRateLimited,
    UserRateLimited,
    get_current_user,
    get_redis,
    rate_limit,
)
from nexusrbx.auth.firebase import firestore_client, initialize_firebase, verify_id_token

__all__ = [
    "initialize_firebase",
    "firestore_client",
    "verify_id_token",
    "get_current_user",
    "get_redis",
    "rate_limit",
    "CurrentUser",
    "ReadRateLimited",
    "UserRateLimited",
]

"""FastAPI dependencies for authentication and rate limiting."""

import asyncio
from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.asyncio import Redis

from nexusrbx.auth.firebase import verify_id_token
from nexusrbx.config import Settings, get_settings
from nexusrbx.models import TokenData

# Security schemes
bearer_scheme = HTTPBearer(auto_error=False)

# Redis connection (initialized in app startup)
redis_client: Redis | None = None


async def get_redis() -> Redis:
    """Get Redis connection."""
    if redis_client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Redis connection not available",
        )
    return redis_client


async def get_current_user(
    bearer: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> TokenData:
    """Get the signed-in user from a Firebase ID bearer token."""
    if bearer:
        token_data = await asyncio.to_thread(verify_id_token, bearer.credentials)
        if token_data:
            return token_data

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing Firebase ID token",
        headers={"WWW-Authenticate": "Bearer"},
    )


CurrentUser = Annotated[TokenData, Depends(get_current_user)]


def rate_limit(scope: str, limit_of: Callable[[Settings], int]):
    """
    Dependency factory for per-user, per-minute rate limits.

    Usage:
        UserRateLimited = Annotated[TokenData, Depends(rate_limit("user", ...))]
    """

    async def check_rate_limit(current_user: CurrentUser) -> TokenData:
        requests_per_minute = limit_of(get_settings())
        redis = await get_redis()

        minute_key = f"ratelimit:{scope}:{current_user.uid}:minute"
        current_count = await redis.incr(minute_key)

        if current_count == 1:
            await redis.expire(minute_key, 60)

        if current_count > requests_per_minute:
            ttl = await redis.ttl(minute_key)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": "rate_limit_exceeded",
                    "message": f"Rate limit exceeded. Maximum {requests_per_minute} requests per minute.",
                    "retry_after": ttl,
                    "limit": requests_per_minute,
                    "remaining": 0,
                },
                headers={"Retry-After": str(ttl)},
            )

        return current_user

    return check_rate_limit


# Type aliases for cleaner dependency injection
UserRateLimited = Annotated[
    TokenData, Depends(rate_limit("user", lambda s: s.user_rate_limit_per_minute))
]
ReadRateLimited = Annotated[
    TokenData, Depends(rate_limit("read", lambda s: s.read_rate_limit_per_minute))
]

"""
Authentication dependencies for FastAPI.

Integrators authenticate with the raw API key in the X-API-Key header.
All delivery queries are scoped to the orders of that key.
"""
import hashlib

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookline.database import get_db
from hookline.models.api_key import ApiKey


# Security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def hash_api_key(raw_key: str) -> str:
    """SHA-256 hex digest stored in api_keys.key_hash."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


async def get_api_key(
    request: Request,
    raw_key: str | None = Depends(api_key_header),
    db: AsyncSession = Depends(get_db)
) -> ApiKey:
    """
    Dependency that requires a valid, active API key.

    Returns the ApiKey row, raises 401 otherwise.

    Usage:
        @router.get("/protected")
        async def protected_route(api_key: ApiKey = Depends(get_api_key)):
            ...
    """
    if not raw_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )

    stmt = select(ApiKey).where(ApiKey.key_hash == hash_api_key(raw_key))
    result = await db.execute(stmt)
    api_key = result.scalar_one_or_none()

    if api_key is None or not api_key.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or inactive API key",
        )

    # Picked up by LoggingMiddleware
    request.state.api_key_id = api_key.id
    return api_key

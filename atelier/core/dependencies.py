"""
Route dependencies: the caller, a DB session and the asset storage.

Tests swap these out through app.dependency_overrides.
"""

from typing import AsyncIterator

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from . import database
from .auth import AuthError, AuthenticatedUser, get_current_user
from .storage import StorageBackend, get_storage


async def get_db() -> AsyncIterator[AsyncSession]:
    async for session in database.get_db():
        yield session


async def get_user(authorization: str = Header(default="")) -> AuthenticatedUser:
    try:
        return await get_current_user(authorization)
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def get_storage_dep() -> StorageBackend:
    return get_storage()

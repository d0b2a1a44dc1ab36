"""
FastAPI dependency injection utilities.

Provides reusable dependencies for database sessions and the repository
query collaborators.
"""

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from repo_registry.core.db import get_async_sessionmaker
from repo_registry.repos.capabilities import AllowAllPolicy, PolicyFilter


async def get_async_db_session() -> AsyncIterator[AsyncSession]:
    """
    Async database session dependency for FastAPI endpoints.

    Usage:
        @router.get("/repositories")
        async def get_repositories(db: AsyncDbSession):
            ...

    Yields:
        Async SQLAlchemy database session
    """
    session_maker = get_async_sessionmaker()
    async with session_maker() as session:
        yield session


# Type alias for async database session dependency
AsyncDbSession = Annotated[AsyncSession, Depends(get_async_db_session)]


def get_policy_filter() -> PolicyFilter:
    """
    Visibility policy dependency.

    Deployments that enforce viewer permissions override this dependency
    with their own PolicyFilter implementation.
    """
    return AllowAllPolicy()


RepositoryPolicy = Annotated[PolicyFilter, Depends(get_policy_filter)]

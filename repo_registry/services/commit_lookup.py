"""Commit lookup backed by the repository_commit table."""

import logging
from collections.abc import Collection

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from repo_registry.db.models import CommitInfo, RepositoryCommit

logger = logging.getLogger(__name__)


class SqlCommitLookup:
    """Loads commits by ID in one query."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def fetch_by_ids(self, ids: Collection[int]) -> dict[int, CommitInfo]:
        if not ids:
            return {}

        stmt = select(RepositoryCommit).where(RepositoryCommit.id.in_(sorted(set(ids))))
        result = await self.db.execute(stmt)
        commits = {commit.id: commit.to_commit_info() for commit in result.scalars()}

        logger.debug("Loaded %d of %d requested commits", len(commits), len(ids))
        return commits

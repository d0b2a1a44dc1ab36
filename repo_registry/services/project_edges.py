"""Repository -> project associations backed by the edge table."""

import logging
from collections.abc import Collection

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from repo_registry.db.models import PROJECT_EDGE_TYPE, Edge

logger = logging.getLogger(__name__)


class SqlProjectEdgeLookup:
    """Loads the project PHIDs of many objects in one query.

    Args:
        db: Async database session
        edge_type: Edge type constant to follow
    """

    def __init__(self, db: AsyncSession, edge_type: int = PROJECT_EDGE_TYPE) -> None:
        self.db = db
        self.edge_type = edge_type

    async def fetch_associated_handles(self, handles: Collection[str]) -> dict[str, set[str]]:
        associated: dict[str, set[str]] = {handle: set() for handle in handles}
        if not associated:
            return associated

        stmt = (
            select(Edge.src, Edge.dst)
            .where(Edge.src.in_(sorted(associated)), Edge.type == self.edge_type)
            .order_by(Edge.src, Edge.seq)
        )
        result = await self.db.execute(stmt)
        for src, dst in result:
            associated[src].add(dst)

        logger.debug("Loaded project edges for %d objects", len(associated))
        return associated

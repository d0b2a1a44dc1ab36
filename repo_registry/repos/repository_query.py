"""
Repository query execution.

Runs a RepositoryCriteria against the database as a single pipeline:

    compile -> execute -> hydrate -> filter -> reconcile -> enrich

Some filters (tracking status, hosting, remote URIs, viewer policy) can
only be evaluated on loaded rows. When they discard rows the pipeline keeps
fetching raw pages, advancing the boundary from the last raw row, until a
full page survives or the table is exhausted.

Usage:
    query = RepositoryQuery(db, criteria)
    page = await query.execute(limit=25)
    page.items, page.identifier_map, page.next_cursor
"""

import logging
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Row
from sqlalchemy.ext.asyncio import AsyncSession

from repo_registry.api.schemas.keyset_pagination import CursorDirection
from repo_registry.core.config import settings
from repo_registry.core.errors import (
    CursorObjectNotFoundError,
    InvalidCursorError,
    InvalidOrderError,
    QueryStateError,
    ValidationError,
)
from repo_registry.core.observability import query_metrics
from repo_registry.db.models import Repository
from repo_registry.domain.enums import HostingFilter, RepositoryStatus
from repo_registry.domain.identifiers import IdentifierPartition
from repo_registry.domain.uri_normalizer import normalized_paths_for_any_vcs
from repo_registry.repos.capabilities import (
    AllowAllPolicy,
    AssociationLookup,
    CommitLookup,
    PolicyFilter,
)
from repo_registry.repos.criteria import RepositoryCriteria
from repo_registry.repos.pagination import decode_cursor, encode_cursor, get_keyset_page_info
from repo_registry.repos.query_compiler import RepositoryQueryCompiler
from repo_registry.services.commit_lookup import SqlCommitLookup
from repo_registry.services.project_edges import SqlProjectEdgeLookup

logger = logging.getLogger(__name__)

IdentifierMap = dict[str | int, Repository]


@dataclass(frozen=True, slots=True)
class RepositoryPage:
    """One page of query results."""

    items: list[Repository]
    identifier_map: IdentifierMap = field(default_factory=dict)
    has_next: bool = False
    has_prev: bool = False
    next_cursor: str | None = None
    prev_cursor: str | None = None
    limit: int = 0


# ============================================================================
# Paging values
# ============================================================================


def get_paging_value_map(repository: Repository, keys: Iterable[str]) -> dict[str, Any]:
    """Order-key values of a loaded repository, used as a page boundary.

    `committed` and `size` read attached data, so the repository must have
    been loaded with the enrichment its order vector implies.

    Raises:
        InvalidOrderError: Unknown order key
        DataNotAttachedError: Required enrichment was not attached
    """
    values: dict[str, Any] = {}
    for key in keys:
        if key == "committed":
            commit = repository.most_recent_commit
            values[key] = commit.epoch if commit else None
        elif key == "size":
            # A repository with no commits sorts with the NULLs.
            values[key] = repository.commit_count or None
        elif key in ("id", "name", "callsign"):
            values[key] = getattr(repository, key)
        else:
            raise InvalidOrderError(f"Unknown order key '{key}'", details={"key": key})
    return values


# ============================================================================
# Post-load filters
# ============================================================================


def filter_by_status(
    repositories: Iterable[Repository], status: RepositoryStatus
) -> list[Repository]:
    if status == RepositoryStatus.OPEN:
        return [r for r in repositories if r.is_tracked]
    if status == RepositoryStatus.CLOSED:
        return [r for r in repositories if not r.is_tracked]
    return list(repositories)


def filter_by_hosting(
    repositories: Iterable[Repository], hosted: HostingFilter
) -> list[Repository]:
    if hosted == HostingFilter.PHABRICATOR:
        return [r for r in repositories if r.is_hosted]
    if hosted == HostingFilter.REMOTE:
        return [r for r in repositories if not r.is_hosted]
    return list(repositories)


def filter_by_remote_uris(
    repositories: Iterable[Repository], uris: Collection[str]
) -> list[Repository]:
    """Keep repositories reachable through any of the given URIs.

    Each requested URI is normalized under every VCS scheme since the
    caller does not say which kind of repository it points at.
    """
    if not uris:
        return list(repositories)
    wanted = normalized_paths_for_any_vcs(uris)
    return [r for r in repositories if r.normalized_paths & wanted]


def build_identifier_map(
    repositories: Iterable[Repository], identifiers: IdentifierPartition
) -> IdentifierMap:
    """Map each requested identifier to the loaded repository it names.

    Numeric identifiers are keyed by their integer value. Identifiers that
    match nothing are absent from the map.
    """
    if not identifiers:
        return {}

    by_id: dict[int, Repository] = {}
    by_callsign: dict[str, Repository] = {}
    by_phid: dict[str, Repository] = {}
    for repository in repositories:
        by_id[repository.id] = repository
        by_phid[repository.phid] = repository
        if repository.callsign:
            by_callsign[repository.callsign] = repository

    identifier_map: IdentifierMap = {}
    for number in identifiers.numeric:
        if number in by_id:
            identifier_map[number] = by_id[number]
    for callsign in identifiers.callsigns:
        if callsign in by_callsign:
            identifier_map[callsign] = by_callsign[callsign]
    for phid in identifiers.phids:
        if phid in by_phid:
            identifier_map[phid] = by_phid[phid]
    return identifier_map


# ============================================================================
# Query
# ============================================================================


class RepositoryQuery:
    """Executes repository criteria page by page.

    Args:
        db: Async database session
        criteria: Frozen query criteria
        policy: Viewer visibility filter (allows everything by default)
        commit_lookup: Loads most recent commits (SQL-backed by default)
        association_lookup: Loads project PHIDs (SQL-backed by default)
        max_fetch_rounds: Cap on raw pages fetched to fill one page
    """

    def __init__(
        self,
        db: AsyncSession,
        criteria: RepositoryCriteria,
        *,
        policy: PolicyFilter | None = None,
        commit_lookup: CommitLookup | None = None,
        association_lookup: AssociationLookup | None = None,
        max_fetch_rounds: int | None = None,
    ) -> None:
        self.db = db
        self.criteria = criteria
        self.policy = policy or AllowAllPolicy()
        self.commit_lookup = commit_lookup or SqlCommitLookup(db)
        self.association_lookup = association_lookup or SqlProjectEdgeLookup(db)
        self.max_fetch_rounds = max_fetch_rounds or settings.repository_max_fetch_rounds
        self._identifier_map: IdentifierMap | None = None

    @property
    def identifier_map(self) -> IdentifierMap:
        """Identifier map of the last execution.

        Raises:
            QueryStateError: The query has not been executed yet
        """
        if self._identifier_map is None:
            raise QueryStateError(
                "Execute the query before reading its identifier map",
                details={"identifiers": bool(self.criteria.identifiers)},
            )
        return self._identifier_map

    async def execute(
        self,
        *,
        cursor: str | None = None,
        limit: int | None = None,
        direction: CursorDirection = CursorDirection.NEXT,
    ) -> RepositoryPage:
        """Load one page.

        Args:
            cursor: Cursor from a previous page, or None for the first page
            limit: Page size (defaults to the configured page size)
            direction: NEXT for forward pagination, PREV for backward

        Returns:
            RepositoryPage in display order

        Raises:
            ValidationError: Limit out of range
            InvalidCursorError: Malformed cursor or cursor for another order
            CursorObjectNotFoundError: Cursor points at a missing repository
        """
        if limit is None:
            limit = settings.repository_page_limit_default
        if limit < 1 or limit > settings.repository_page_limit_max:
            raise ValidationError(
                f"Limit must be between 1 and {settings.repository_page_limit_max}",
                details={"limit": limit},
            )

        with query_metrics.track():
            return await self._execute(cursor=cursor, limit=limit, direction=direction)

    async def _execute(
        self, *, cursor: str | None, limit: int, direction: CursorDirection
    ) -> RepositoryPage:
        criteria = self.criteria
        order = criteria.order.as_strings()
        query_reversed = direction == CursorDirection.PREV
        is_first_page = cursor is None

        paging_values = None
        if cursor:
            paging_values = await self._load_paging_values(cursor)

        compiler = RepositoryQueryCompiler(criteria, policy=self.policy)

        survivors: list[Repository] = []
        last_loaded: Repository | None = None
        exhausted = False
        loaded_count = 0
        rounds = 0

        while True:
            stmt = compiler.compile(
                limit=limit + 1,
                paging_values=paging_values,
                query_reversed=query_reversed,
            )
            result = await self.db.execute(stmt)
            rows = result.all()
            rounds += 1
            loaded_count += len(rows)
            query_metrics.rows_loaded(len(rows))

            if rows:
                repositories = await self._assemble(rows, criteria)
                survivors.extend(self._filter_loaded(repositories))
                last_loaded = repositories[-1]

            if len(rows) <= limit:
                exhausted = True
                break
            if len(survivors) > limit:
                break
            if rounds >= self.max_fetch_rounds:
                logger.warning(
                    "Stopped refilling repository page after %d rounds (%d of %d rows kept)",
                    rounds,
                    len(survivors),
                    loaded_count,
                )
                break

            paging_values = get_paging_value_map(last_loaded, criteria.order.keys())

        def make_cursor(repository: Repository) -> str:
            return encode_cursor(repository.id, order)

        items, has_next, has_prev, next_cursor, prev_cursor = get_keyset_page_info(
            survivors, limit, direction, make_cursor, is_first_page=is_first_page
        )

        # A truncated scan still has rows beyond the last raw row loaded.
        if not exhausted and len(survivors) <= limit and last_loaded is not None:
            if query_reversed:
                has_prev = True
                prev_cursor = make_cursor(last_loaded)
            else:
                has_next = True
                next_cursor = make_cursor(last_loaded)

        identifier_map = build_identifier_map(items, criteria.identifiers)

        if criteria.need_project_phids:
            await self._attach_project_phids(items)

        self._identifier_map = identifier_map

        logger.info(
            "Repository query returned %d repositories (%d rows loaded in %d rounds)",
            len(items),
            loaded_count,
            rounds,
        )
        return RepositoryPage(
            items=items,
            identifier_map=identifier_map,
            has_next=has_next,
            has_prev=has_prev,
            next_cursor=next_cursor,
            prev_cursor=prev_cursor,
            limit=limit,
        )

    async def _load_paging_values(self, cursor: str) -> dict[str, Any]:
        """Resolve a cursor to the order-key values of the repository it names."""
        cursor_id, cursor_order = decode_cursor(cursor)
        order = self.criteria.order.as_strings()
        if cursor_order != order:
            raise InvalidCursorError(
                "Cursor was issued for a different order",
                details={"cursor_order": cursor_order, "order": order},
            )

        cursor_criteria = self.criteria.for_cursor_object(cursor_id)
        stmt = RepositoryQueryCompiler(cursor_criteria, policy=self.policy).compile(limit=1)
        result = await self.db.execute(stmt)
        rows = result.all()
        if not rows:
            raise CursorObjectNotFoundError(
                "Repository referenced by cursor not found",
                details={"repository_id": cursor_id},
            )

        repositories = await self._assemble(rows, cursor_criteria)
        return get_paging_value_map(repositories[0], self.criteria.order.keys())

    async def _assemble(
        self, rows: Sequence[Row], criteria: RepositoryCriteria
    ) -> list[Repository]:
        """Hydrate repositories and attach summary-derived data."""
        repositories: list[Repository] = []
        commit_ids: dict[int, int] = {}

        for row in rows:
            repository = row[0]
            # The session may hand back an instance a previous query enriched.
            repository.reset_attachments()
            if criteria.needs_summary_join:
                size, last_commit_id = row[1], row[3]
                if criteria.needs_commit_counts:
                    repository.attach_commit_count(size or 0)
                if last_commit_id is not None:
                    commit_ids[repository.id] = last_commit_id
            repositories.append(repository)

        if criteria.needs_most_recent_commits:
            commits = {}
            if commit_ids:
                commits = await self.commit_lookup.fetch_by_ids(set(commit_ids.values()))
                query_metrics.enrichment_call("commit_lookup")
            for repository in repositories:
                commit_id = commit_ids.get(repository.id)
                repository.attach_most_recent_commit(
                    commits.get(commit_id) if commit_id is not None else None
                )

        return repositories

    def _filter_loaded(self, repositories: Sequence[Repository]) -> list[Repository]:
        criteria = self.criteria
        kept = filter_by_status(repositories, criteria.status)
        kept = filter_by_hosting(kept, criteria.hosted)
        kept = filter_by_remote_uris(kept, criteria.remote_uris)
        if not kept:
            return kept
        return self.policy.filter_loaded(kept)

    async def _attach_project_phids(self, repositories: Sequence[Repository]) -> None:
        if not repositories:
            return
        handles = await self.association_lookup.fetch_associated_handles(
            [repository.phid for repository in repositories]
        )
        query_metrics.enrichment_call("project_edges")
        for repository in repositories:
            repository.attach_project_phids(handles.get(repository.phid, set()))


async def list_repositories(
    db: AsyncSession,
    criteria: RepositoryCriteria,
    *,
    cursor: str | None = None,
    limit: int | None = None,
    direction: CursorDirection = CursorDirection.NEXT,
    policy: PolicyFilter | None = None,
    commit_lookup: CommitLookup | None = None,
    association_lookup: AssociationLookup | None = None,
) -> RepositoryPage:
    """List repositories with keyset/cursor-based pagination.

    Args:
        db: Database session
        criteria: Frozen query criteria
        cursor: Cursor from previous page
        limit: Number of items per page
        direction: NEXT for forward pagination, PREV for backward
        policy: Viewer visibility filter
        commit_lookup: Most recent commit loader
        association_lookup: Project PHID loader

    Returns:
        RepositoryPage
    """
    query = RepositoryQuery(
        db,
        criteria,
        policy=policy,
        commit_lookup=commit_lookup,
        association_lookup=association_lookup,
    )
    return await query.execute(cursor=cursor, limit=limit, direction=direction)

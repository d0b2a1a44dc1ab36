from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query

from repo_registry.api.schemas.keyset_pagination import CursorDirection
from repo_registry.api.schemas.repository import RepositoryPageResponse, RepositoryResponse
from repo_registry.core.config import settings
from repo_registry.core.dependencies import AsyncDbSession, RepositoryPolicy
from repo_registry.repos.criteria import RepositoryCriteriaBuilder
from repo_registry.repos.repository_query import RepositoryQuery

router = APIRouter(tags=["repositories"])


@router.get("/repositories", response_model=RepositoryPageResponse)
async def get_repositories(
    db: AsyncDbSession,
    policy: RepositoryPolicy,
    ids: Annotated[list[int] | None, Query(description="Repository IDs")] = None,
    phids: Annotated[list[str] | None, Query(description="Repository PHIDs")] = None,
    callsigns: Annotated[list[str] | None, Query(description="Repository callsigns")] = None,
    identifiers: Annotated[
        list[str] | None,
        Query(description="Mixed IDs, callsigns and PHIDs; overrides ids/phids/callsigns"),
    ] = None,
    types: Annotated[list[str] | None, Query(description="VCS types (git, svn, hg)")] = None,
    uuids: Annotated[list[str] | None, Query(description="Repository UUIDs")] = None,
    name_contains: Annotated[
        str | None, Query(description="Case-insensitive name substring")
    ] = None,
    remote_uris: Annotated[
        list[str] | None, Query(description="Remote URIs the repository is reachable at")
    ] = None,
    query: Annotated[
        str | None, Query(description="Typeahead query over names and callsigns")
    ] = None,
    status: Annotated[str, Query(description="status-open, status-closed or status-all")] = (
        "status-all"
    ),
    hosted: Annotated[str, Query(description="hosted-phab, hosted-remote or hosted-all")] = (
        "hosted-all"
    ),
    order: Annotated[
        list[str] | None,
        Query(description="Builtin order name, or an order vector such as -name&order=id"),
    ] = None,
    need_commit_counts: Annotated[bool, Query()] = False,
    need_most_recent_commits: Annotated[bool, Query()] = False,
    need_project_phids: Annotated[bool, Query()] = False,
    cursor: Annotated[
        str | None, Query(description="Base64-encoded cursor from previous page")
    ] = None,
    limit: Annotated[
        int | None,
        Query(ge=1, le=settings.repository_page_limit_max, description="Number of items per page"),
    ] = None,
    direction: Annotated[
        CursorDirection, Query(description="Pagination direction")
    ] = CursorDirection.NEXT,
) -> RepositoryPageResponse:
    """List repositories with keyset pagination.

    `identifier_map` maps each requested identifier to the ID of the
    repository it resolved to on this page.
    """
    builder = (
        RepositoryCriteriaBuilder()
        .with_status(status)
        .with_hosted(hosted)
        .with_name_contains(name_contains)
        .with_datasource_query(query)
        .need_commit_counts(need_commit_counts)
        .need_most_recent_commits(need_most_recent_commits)
        .need_project_phids(need_project_phids)
    )
    if ids:
        builder.with_ids(ids)
    if phids:
        builder.with_phids(phids)
    if callsigns:
        builder.with_callsigns(callsigns)
    if identifiers:
        builder.with_identifiers(identifiers)
    if types:
        builder.with_types(types)
    if uuids:
        builder.with_uuids(uuids)
    if remote_uris:
        builder.with_remote_uris(remote_uris)
    if order:
        builder.with_order(order[0] if len(order) == 1 else order)

    repository_query = RepositoryQuery(db, builder.build(), policy=policy)
    page = await repository_query.execute(cursor=cursor, limit=limit, direction=direction)

    return RepositoryPageResponse(
        items=[RepositoryResponse.from_repository(r) for r in page.items],
        next_cursor=page.next_cursor,
        prev_cursor=page.prev_cursor,
        has_next=page.has_next,
        has_prev=page.has_prev,
        limit=page.limit,
        identifier_map={
            str(token): repository.id for token, repository in page.identifier_map.items()
        },
    )

"""
Integration tests for the repository query pipeline against SQLite.

Tests cover:
- Status and hosting post-load filters
- Remote URI matching across VCS normalizations
- Identifier resolution, the identifier map, and identifier override
- Typeahead (datasource) and name filters
- Keyset pagination for every builtin order, forwards and backwards
- Refilling pages after post-load filtering
- Batched enrichment through the default SQL collaborators and mocks
"""

from unittest.mock import AsyncMock

import pytest

from repo_registry.api.schemas.keyset_pagination import CursorDirection
from repo_registry.core.errors import (
    CursorObjectNotFoundError,
    DataNotAttachedError,
    InvalidCursorError,
    QueryStateError,
)
from repo_registry.db.models import CommitInfo, Repository
from repo_registry.repos.criteria import RepositoryCriteriaBuilder
from repo_registry.repos.ordering import BUILTIN_ORDERS
from repo_registry.repos.pagination import encode_cursor
from repo_registry.repos.repository_query import RepositoryQuery, list_repositories


def _ids(page) -> list[int]:
    return [r.id for r in page.items]


async def _collect_all(db, criteria, limit) -> list[int]:
    collected: list[int] = []
    cursor = None
    for _ in range(50):
        page = await list_repositories(db, criteria, cursor=cursor, limit=limit)
        collected.extend(_ids(page))
        if not page.has_next:
            return collected
        cursor = page.next_cursor
    raise AssertionError("pagination did not terminate")


class TestStatusAndHostingFilters:
    @pytest.mark.anyio
    async def test_open_keeps_tracked_repositories(self, async_db_session, seeded_registry):
        criteria = RepositoryCriteriaBuilder().with_status("status-open").build()

        page = await list_repositories(async_db_session, criteria)

        reg = seeded_registry
        assert _ids(page) == reg.ids(reg.epsilon, reg.beta, reg.alpha)

    @pytest.mark.anyio
    async def test_closed_keeps_untracked_repositories(self, async_db_session, seeded_registry):
        criteria = RepositoryCriteriaBuilder().with_status("closed").build()

        page = await list_repositories(async_db_session, criteria)

        reg = seeded_registry
        assert _ids(page) == reg.ids(reg.delta, reg.gamma)

    @pytest.mark.anyio
    async def test_open_and_closed_partition_all(self, async_db_session, seeded_registry):
        results = {}
        for status in ("status-open", "status-closed", "status-all"):
            criteria = RepositoryCriteriaBuilder().with_status(status).build()
            page = await list_repositories(async_db_session, criteria)
            results[status] = set(_ids(page))

        assert results["status-open"].isdisjoint(results["status-closed"])
        assert results["status-open"] | results["status-closed"] == results["status-all"]
        assert len(results["status-all"]) == 5

    @pytest.mark.anyio
    async def test_hosted_filters(self, async_db_session, seeded_registry):
        reg = seeded_registry

        hosted = await list_repositories(
            async_db_session, RepositoryCriteriaBuilder().with_hosted("hosted-phab").build()
        )
        remote = await list_repositories(
            async_db_session, RepositoryCriteriaBuilder().with_hosted("remote").build()
        )

        assert _ids(hosted) == [reg.beta.id]
        assert set(_ids(remote)) == {reg.alpha.id, reg.gamma.id, reg.delta.id, reg.epsilon.id}


class TestRemoteURIFilter:
    @pytest.mark.anyio
    async def test_scp_style_git_uri_matches(self, async_db_session, seeded_registry):
        criteria = (
            RepositoryCriteriaBuilder()
            .with_remote_uris(["git@github.com:acme/alpha.git"])
            .build()
        )

        page = await list_repositories(async_db_session, criteria)

        assert _ids(page) == [seeded_registry.alpha.id]

    @pytest.mark.anyio
    async def test_https_spelling_matches_scp_remote(self, async_db_session, seeded_registry):
        criteria = (
            RepositoryCriteriaBuilder().with_remote_uris(["https://github.com/acme/alpha"]).build()
        )

        page = await list_repositories(async_db_session, criteria)

        assert _ids(page) == [seeded_registry.alpha.id]

    @pytest.mark.anyio
    async def test_hosted_clone_uri_matches_callsign(self, async_db_session, seeded_registry):
        criteria = (
            RepositoryCriteriaBuilder()
            .with_remote_uris(["https://phab.example.com/diffusion/BETA/beta.git"])
            .build()
        )

        page = await list_repositories(async_db_session, criteria)

        assert _ids(page) == [seeded_registry.beta.id]

    @pytest.mark.anyio
    async def test_unknown_uri_returns_empty_page(self, async_db_session, seeded_registry):
        criteria = (
            RepositoryCriteriaBuilder()
            .with_remote_uris(["git@example.com:nobody/nothing.git"])
            .build()
        )

        page = await list_repositories(async_db_session, criteria)

        assert page.items == []
        assert page.has_next is False


class TestIdentifiers:
    @pytest.mark.anyio
    async def test_identifier_map_resolves_each_kind(self, async_db_session, seeded_registry):
        reg = seeded_registry
        criteria = (
            RepositoryCriteriaBuilder()
            .with_identifiers([str(reg.alpha.id), "BETA", reg.epsilon.phid, "NOPE"])
            .build()
        )

        query = RepositoryQuery(async_db_session, criteria)
        page = await query.execute()

        assert set(_ids(page)) == {reg.alpha.id, reg.beta.id, reg.epsilon.id}
        assert {k: r.id for k, r in page.identifier_map.items()} == {
            reg.alpha.id: reg.alpha.id,
            "BETA": reg.beta.id,
            reg.epsilon.phid: reg.epsilon.id,
        }
        assert "NOPE" not in page.identifier_map
        assert query.identifier_map is page.identifier_map

    @pytest.mark.anyio
    async def test_identifiers_override_explicit_ids(self, async_db_session, seeded_registry):
        reg = seeded_registry
        criteria = (
            RepositoryCriteriaBuilder()
            .with_ids([reg.gamma.id])
            .with_callsigns(["DELTA"])
            .with_identifiers([str(reg.alpha.id)])
            .build()
        )

        page = await list_repositories(async_db_session, criteria)

        assert _ids(page) == [reg.alpha.id]

    @pytest.mark.anyio
    async def test_explicit_filters_intersect(self, async_db_session, seeded_registry):
        reg = seeded_registry
        criteria = (
            RepositoryCriteriaBuilder()
            .with_ids([reg.alpha.id, reg.beta.id])
            .with_callsigns(["BETA", "DELTA"])
            .build()
        )

        page = await list_repositories(async_db_session, criteria)

        assert _ids(page) == [reg.beta.id]

    @pytest.mark.anyio
    async def test_identifier_map_without_identifiers_is_empty(
        self, async_db_session, seeded_registry
    ):
        query = RepositoryQuery(async_db_session, RepositoryCriteriaBuilder().build())

        page = await query.execute()

        assert page.identifier_map == {}

    @pytest.mark.anyio
    async def test_identifier_map_before_execute_raises(self, async_db_session):
        query = RepositoryQuery(async_db_session, RepositoryCriteriaBuilder().build())

        with pytest.raises(QueryStateError):
            _ = query.identifier_map


class TestPredicates:
    @pytest.mark.anyio
    @pytest.mark.parametrize(
        ("datasource_query", "expected"),
        [
            ("rALP", ["alpha"]),
            ("lph", ["alpha"]),
            ("rbe", ["beta"]),
            ("eta", ["beta"]),
            ("EPS", ["epsilon"]),
            ("zzz", []),
        ],
    )
    async def test_datasource_query(
        self, async_db_session, seeded_registry, datasource_query, expected
    ):
        criteria = RepositoryCriteriaBuilder().with_datasource_query(datasource_query).build()

        page = await list_repositories(async_db_session, criteria)

        assert _ids(page) == [getattr(seeded_registry, name).id for name in expected]

    @pytest.mark.anyio
    async def test_name_contains_is_case_insensitive(self, async_db_session, seeded_registry):
        criteria = RepositoryCriteriaBuilder().with_name_contains("ALPH").build()

        page = await list_repositories(async_db_session, criteria)

        assert _ids(page) == [seeded_registry.alpha.id]

    @pytest.mark.anyio
    async def test_name_contains_escapes_wildcards(self, async_db_session, seeded_registry):
        criteria = RepositoryCriteriaBuilder().with_name_contains("%").build()

        page = await list_repositories(async_db_session, criteria)

        assert page.items == []

    @pytest.mark.anyio
    async def test_types_and_uuids(self, async_db_session, seeded_registry):
        reg = seeded_registry

        by_type = await list_repositories(
            async_db_session, RepositoryCriteriaBuilder().with_types(["mercurial", "svn"]).build()
        )
        by_uuid = await list_repositories(
            async_db_session, RepositoryCriteriaBuilder().with_uuids(["uuid-alpha"]).build()
        )

        assert _ids(by_type) == [reg.delta.id, reg.gamma.id]
        assert _ids(by_uuid) == [reg.alpha.id]


class TestPagination:
    @pytest.mark.anyio
    async def test_name_order_pages_alphabetically(self, async_db_session, seeded_registry):
        criteria = RepositoryCriteriaBuilder().with_order("name").build()

        first = await list_repositories(async_db_session, criteria, limit=1)
        second = await list_repositories(
            async_db_session, criteria, cursor=first.next_cursor, limit=1
        )

        assert [r.name for r in first.items] == ["Alpha"]
        assert first.has_next is True
        assert first.has_prev is False
        assert [r.name for r in second.items] == ["Beta"]
        assert second.has_prev is True

    @pytest.mark.anyio
    async def test_committed_order_puts_repositories_without_commits_last(
        self, async_db_session, seeded_registry
    ):
        reg = seeded_registry
        criteria = RepositoryCriteriaBuilder().with_order("committed").build()

        page = await list_repositories(async_db_session, criteria)

        assert _ids(page) == reg.ids(reg.beta, reg.epsilon, reg.alpha, reg.delta, reg.gamma)

    @pytest.mark.anyio
    async def test_size_order(self, async_db_session, seeded_registry):
        reg = seeded_registry
        criteria = RepositoryCriteriaBuilder().with_order("size").build()

        page = await list_repositories(async_db_session, criteria)

        assert _ids(page) == reg.ids(reg.epsilon, reg.alpha, reg.beta, reg.delta, reg.gamma)

    @pytest.mark.anyio
    @pytest.mark.parametrize("order", sorted(BUILTIN_ORDERS))
    @pytest.mark.parametrize("limit", [1, 2, 3])
    async def test_paging_matches_single_page(
        self, async_db_session, seeded_registry, order, limit
    ):
        criteria = RepositoryCriteriaBuilder().with_order(order).build()

        whole = await list_repositories(async_db_session, criteria, limit=100)
        paged = await _collect_all(async_db_session, criteria, limit)

        assert paged == _ids(whole)
        assert len(paged) == len(set(paged))

    @pytest.mark.anyio
    async def test_callsign_order_puts_repositories_without_callsign_last(
        self, async_db_session, seeded_registry
    ):
        criteria = RepositoryCriteriaBuilder().with_order("callsign").build()

        page = await list_repositories(async_db_session, criteria)

        assert [r.callsign for r in page.items] == ["ALPHA", "BETA", "DELTA", "EPS", None]

    @pytest.mark.anyio
    async def test_cursor_on_missing_callsign_resumes(self, async_db_session, seeded_registry):
        reg = seeded_registry
        criteria = RepositoryCriteriaBuilder().with_order("callsign").build()

        first = await list_repositories(async_db_session, criteria, limit=4)
        assert first.has_next
        last = await list_repositories(
            async_db_session, criteria, cursor=first.next_cursor, limit=4
        )
        assert _ids(last) == reg.ids(reg.gamma)
        assert not last.has_next

        gamma_cursor = encode_cursor(reg.gamma.id, ["callsign", "id"])
        after = await list_repositories(async_db_session, criteria, cursor=gamma_cursor)
        before = await list_repositories(
            async_db_session,
            criteria,
            cursor=gamma_cursor,
            limit=2,
            direction=CursorDirection.PREV,
        )

        assert after.items == []
        assert _ids(before) == reg.ids(reg.delta, reg.epsilon)
        assert before.has_prev

    @pytest.mark.anyio
    async def test_prev_returns_previous_page_in_display_order(
        self, async_db_session, seeded_registry
    ):
        criteria = RepositoryCriteriaBuilder().with_order("name").build()

        first = await list_repositories(async_db_session, criteria, limit=2)
        second = await list_repositories(
            async_db_session, criteria, cursor=first.next_cursor, limit=2
        )
        back = await list_repositories(
            async_db_session,
            criteria,
            cursor=second.prev_cursor,
            limit=2,
            direction=CursorDirection.PREV,
        )

        assert [r.name for r in second.items] == ["Delta", "Epsilon"]
        assert [r.name for r in back.items] == ["Alpha", "Beta"]
        assert back.has_prev is False
        assert back.has_next is True

    @pytest.mark.anyio
    async def test_execution_is_idempotent(self, async_db_session, seeded_registry):
        criteria = (
            RepositoryCriteriaBuilder()
            .with_order("committed")
            .with_status("open")
            .need_commit_counts(True)
            .build()
        )
        query = RepositoryQuery(async_db_session, criteria)

        first = await query.execute(limit=2)
        second = await query.execute(limit=2)

        assert _ids(first) == _ids(second)
        assert first.next_cursor == second.next_cursor
        assert [r.commit_count for r in first.items] == [r.commit_count for r in second.items]

    @pytest.mark.anyio
    async def test_cursor_for_missing_repository_raises(self, async_db_session, seeded_registry):
        criteria = RepositoryCriteriaBuilder().build()

        with pytest.raises(CursorObjectNotFoundError):
            await list_repositories(async_db_session, criteria, cursor=encode_cursor(999, ["id"]))

    @pytest.mark.anyio
    async def test_cursor_for_other_order_raises(self, async_db_session, seeded_registry):
        criteria = RepositoryCriteriaBuilder().with_order("name").build()
        cursor = encode_cursor(seeded_registry.alpha.id, ["id"])

        with pytest.raises(InvalidCursorError):
            await list_repositories(async_db_session, criteria, cursor=cursor)


class TestPostFilterRefill:
    @pytest.mark.anyio
    async def test_pages_are_refilled_after_filtering(self, async_db_session, seeded_registry):
        reg = seeded_registry
        criteria = RepositoryCriteriaBuilder().with_status("open").build()

        first = await list_repositories(async_db_session, criteria, limit=1)
        collected = await _collect_all(async_db_session, criteria, limit=1)

        assert _ids(first) == [reg.epsilon.id]
        assert first.has_next is True
        assert collected == reg.ids(reg.epsilon, reg.beta, reg.alpha)

    @pytest.mark.anyio
    async def test_capped_refill_still_offers_next_page(self, async_db_session, seeded_registry):
        reg = seeded_registry
        criteria = RepositoryCriteriaBuilder().with_status("open").build()
        query = RepositoryQuery(async_db_session, criteria, max_fetch_rounds=1)

        # Newest first: Epsilon survives, Delta is loaded and dropped.
        page = await query.execute(limit=1)

        assert _ids(page) == [reg.epsilon.id]
        assert page.has_next is True

        resumed = await query.execute(cursor=page.next_cursor, limit=1)
        assert reg.delta.id not in _ids(resumed)


class TestEnrichment:
    @pytest.mark.anyio
    async def test_default_collaborators_attach_data(self, async_db_session, seeded_registry):
        reg = seeded_registry
        criteria = (
            RepositoryCriteriaBuilder()
            .need_commit_counts(True)
            .need_most_recent_commits(True)
            .need_project_phids(True)
            .build()
        )

        page = await list_repositories(async_db_session, criteria)
        by_id = {r.id: r for r in page.items}

        assert by_id[reg.alpha.id].commit_count == 10
        assert by_id[reg.gamma.id].commit_count == 0
        assert by_id[reg.alpha.id].most_recent_commit.epoch == 1000
        assert by_id[reg.delta.id].most_recent_commit is None
        assert by_id[reg.epsilon.id].project_phids == {"PHID-PROJ-backend", "PHID-PROJ-infra"}
        assert by_id[reg.beta.id].project_phids == set()

    @pytest.mark.anyio
    async def test_collaborators_are_called_once_per_page(
        self, async_db_session, seeded_registry
    ):
        reg = seeded_registry
        commit_lookup = AsyncMock()
        commit_lookup.fetch_by_ids.return_value = {}
        association_lookup = AsyncMock()
        association_lookup.fetch_associated_handles.return_value = {}
        criteria = (
            RepositoryCriteriaBuilder()
            .need_most_recent_commits(True)
            .need_project_phids(True)
            .build()
        )

        page = await list_repositories(
            async_db_session,
            criteria,
            commit_lookup=commit_lookup,
            association_lookup=association_lookup,
        )

        commit_lookup.fetch_by_ids.assert_awaited_once()
        association_lookup.fetch_associated_handles.assert_awaited_once()
        (requested_handles,) = association_lookup.fetch_associated_handles.await_args.args
        assert set(requested_handles) == {r.phid for r in page.items}
        assert all(r.most_recent_commit is None for r in page.items)
        assert page.items[0].id == reg.epsilon.id

    @pytest.mark.anyio
    async def test_commit_lookup_result_is_attached(self, async_db_session, seeded_registry):
        commit = CommitInfo(id=1, epoch=42, commit_identifier="abc123")
        commit_lookup = AsyncMock()
        commit_lookup.fetch_by_ids.return_value = {1: commit}
        criteria = (
            RepositoryCriteriaBuilder()
            .with_ids([seeded_registry.alpha.id])
            .need_most_recent_commits(True)
            .build()
        )

        page = await list_repositories(async_db_session, criteria, commit_lookup=commit_lookup)

        commit_lookup.fetch_by_ids.assert_awaited_once_with({1})
        assert page.items[0].most_recent_commit == commit

    @pytest.mark.anyio
    async def test_no_commit_lookup_without_commit_ids(self, async_db_session, seeded_registry):
        commit_lookup = AsyncMock()
        criteria = (
            RepositoryCriteriaBuilder()
            .with_ids([seeded_registry.gamma.id, seeded_registry.delta.id])
            .need_most_recent_commits(True)
            .build()
        )

        page = await list_repositories(async_db_session, criteria, commit_lookup=commit_lookup)

        commit_lookup.fetch_by_ids.assert_not_awaited()
        assert [r.most_recent_commit for r in page.items] == [None, None]

    @pytest.mark.anyio
    async def test_no_association_lookup_for_empty_page(self, async_db_session, seeded_registry):
        association_lookup = AsyncMock()
        criteria = (
            RepositoryCriteriaBuilder()
            .with_name_contains("no such repository")
            .need_project_phids(True)
            .build()
        )

        page = await list_repositories(
            async_db_session, criteria, association_lookup=association_lookup
        )

        assert page.items == []
        association_lookup.fetch_associated_handles.assert_not_awaited()

    @pytest.mark.anyio
    async def test_unrequested_data_is_not_attached(self, async_db_session, seeded_registry):
        page = await list_repositories(async_db_session, RepositoryCriteriaBuilder().build())

        with pytest.raises(DataNotAttachedError):
            _ = page.items[0].commit_count
        with pytest.raises(DataNotAttachedError):
            _ = page.items[0].project_phids

    @pytest.mark.anyio
    async def test_data_from_earlier_query_in_session_is_not_kept(
        self, async_db_session, seeded_registry
    ):
        enriched = (
            RepositoryCriteriaBuilder()
            .need_commit_counts(True)
            .need_most_recent_commits(True)
            .need_project_phids(True)
            .build()
        )
        first = await list_repositories(async_db_session, enriched)
        assert all(r.has_attached("project_phids") for r in first.items)

        page = await list_repositories(async_db_session, RepositoryCriteriaBuilder().build())

        assert [r.id for r in page.items] == [r.id for r in first.items]
        for repository in page.items:
            assert not repository.has_attached("commit_count")
            assert not repository.has_attached("most_recent_commit")
            assert not repository.has_attached("project_phids")


class TestPolicy:
    @pytest.mark.anyio
    async def test_policy_predicates_and_filter_apply(self, async_db_session, seeded_registry):
        reg = seeded_registry

        class HideSvnAndBeta:
            def where_clauses(self):
                return [Repository.vcs != "svn"]

            def filter_loaded(self, repositories):
                return [r for r in repositories if r.callsign != "BETA"]

        page = await list_repositories(
            async_db_session, RepositoryCriteriaBuilder().build(), policy=HideSvnAndBeta()
        )

        assert _ids(page) == reg.ids(reg.epsilon, reg.delta, reg.alpha)

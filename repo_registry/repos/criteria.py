"""
Repository query criteria.

Criteria are assembled with RepositoryCriteriaBuilder and frozen by
build(). The compiler and executor only ever read them.

Usage:
    criteria = (
        RepositoryCriteriaBuilder()
        .with_identifiers(["42", "XYZ", "PHID-REPO-abcdefghijklmnopqrst"])
        .with_status("status-open")
        .with_order("committed")
        .need_commit_counts(True)
        .build()
    )
"""

from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from repo_registry.core.errors import UnknownFilterValueError
from repo_registry.domain.enums import (
    HOSTING_ALIASES,
    STATUS_ALIASES,
    HostingFilter,
    RepositoryStatus,
    VCSType,
)
from repo_registry.domain.identifiers import IdentifierPartition, classify
from repo_registry.repos.ordering import repository_order_vector
from repo_registry.repos.pagination import OrderVector


@dataclass(frozen=True, slots=True)
class RepositoryCriteria:
    """Immutable filter, order and enrichment settings for one query.

    Empty collections and None mean "unconstrained".
    """

    ids: frozenset[int] = frozenset()
    phids: frozenset[str] = frozenset()
    callsigns: frozenset[str] = frozenset()
    identifiers: IdentifierPartition = field(default_factory=IdentifierPartition)
    types: frozenset[VCSType] = frozenset()
    uuids: frozenset[str] = frozenset()
    name_contains: str | None = None
    remote_uris: tuple[str, ...] = ()
    datasource_query: str | None = None
    status: RepositoryStatus = RepositoryStatus.ALL
    hosted: HostingFilter = HostingFilter.ALL
    order: OrderVector = field(default_factory=lambda: repository_order_vector(None))
    need_commit_counts: bool = False
    need_most_recent_commits: bool = False
    need_project_phids: bool = False

    @property
    def needs_commit_counts(self) -> bool:
        """Commit counts are loaded when requested or when ordering by size."""
        return self.need_commit_counts or self.order.contains_key("size")

    @property
    def needs_most_recent_commits(self) -> bool:
        """Most recent commits are loaded when requested or when ordering by commit time."""
        return self.need_most_recent_commits or self.order.contains_key("committed")

    @property
    def needs_summary_join(self) -> bool:
        return self.needs_commit_counts or self.needs_most_recent_commits

    def for_cursor_object(self, repository_id: int) -> "RepositoryCriteria":
        """Criteria that load just the repository a cursor points at.

        Only the enrichment the order vector depends on is kept. Filters are
        dropped: the boundary row must load even if it would now be filtered.
        """
        return RepositoryCriteria(ids=frozenset({repository_id}), order=self.order)


def _parse_status(status: str | RepositoryStatus) -> RepositoryStatus:
    if isinstance(status, RepositoryStatus):
        return status
    if status in STATUS_ALIASES:
        return STATUS_ALIASES[status]
    try:
        return RepositoryStatus(status)
    except ValueError:
        raise UnknownFilterValueError(
            f"Unknown status '{status}'",
            details={"status": status, "valid": [s.value for s in RepositoryStatus]},
        )


def _parse_hosted(hosted: str | HostingFilter) -> HostingFilter:
    if isinstance(hosted, HostingFilter):
        return hosted
    if hosted in HOSTING_ALIASES:
        return HOSTING_ALIASES[hosted]
    try:
        return HostingFilter(hosted)
    except ValueError:
        raise UnknownFilterValueError(
            f"Unknown hosted filter '{hosted}'",
            details={"hosted": hosted, "valid": [h.value for h in HostingFilter]},
        )


def _parse_type(vcs: str | VCSType) -> VCSType:
    if isinstance(vcs, VCSType):
        return vcs
    if vcs == "mercurial":
        return VCSType.MERCURIAL
    try:
        return VCSType(vcs)
    except ValueError:
        raise UnknownFilterValueError(
            f"Unknown repository type '{vcs}'",
            details={"type": vcs, "valid": [t.value for t in VCSType]},
        )


class RepositoryCriteriaBuilder:
    """Fluent builder for RepositoryCriteria.

    Values are validated as they are set, so configuration errors surface
    before any query runs.
    """

    def __init__(self) -> None:
        self._criteria = RepositoryCriteria()

    def _set(self, **changes) -> "RepositoryCriteriaBuilder":
        self._criteria = replace(self._criteria, **changes)
        return self

    def with_ids(self, ids: Iterable[int | str]) -> "RepositoryCriteriaBuilder":
        return self._set(ids=frozenset(int(i) for i in ids))

    def with_phids(self, phids: Iterable[str]) -> "RepositoryCriteriaBuilder":
        return self._set(phids=frozenset(phids))

    def with_callsigns(self, callsigns: Iterable[str]) -> "RepositoryCriteriaBuilder":
        return self._set(callsigns=frozenset(callsigns))

    def with_identifiers(self, identifiers: Iterable[str]) -> "RepositoryCriteriaBuilder":
        """Filter by a mixed list of IDs, callsigns and PHIDs.

        When any identifier is given, this replaces the with_ids(),
        with_phids() and with_callsigns() constraints instead of adding to
        them.
        """
        return self._set(identifiers=classify(identifiers))

    def with_types(self, types: Iterable[str | VCSType]) -> "RepositoryCriteriaBuilder":
        return self._set(types=frozenset(_parse_type(t) for t in types))

    def with_uuids(self, uuids: Iterable[str]) -> "RepositoryCriteriaBuilder":
        return self._set(uuids=frozenset(uuids))

    def with_name_contains(self, contains: str | None) -> "RepositoryCriteriaBuilder":
        return self._set(name_contains=contains or None)

    def with_remote_uris(self, uris: Iterable[str]) -> "RepositoryCriteriaBuilder":
        return self._set(remote_uris=tuple(uris))

    def with_datasource_query(self, query: str | None) -> "RepositoryCriteriaBuilder":
        return self._set(datasource_query=query or None)

    def with_status(self, status: str | RepositoryStatus) -> "RepositoryCriteriaBuilder":
        return self._set(status=_parse_status(status))

    def with_hosted(self, hosted: str | HostingFilter) -> "RepositoryCriteriaBuilder":
        return self._set(hosted=_parse_hosted(hosted))

    def with_order(self, order: str | list[str] | tuple[str, ...]) -> "RepositoryCriteriaBuilder":
        """Order by a builtin order name ("committed") or a vector (["-name", "id"])."""
        return self._set(order=repository_order_vector(order))

    def need_commit_counts(self, need: bool) -> "RepositoryCriteriaBuilder":
        return self._set(need_commit_counts=need)

    def need_most_recent_commits(self, need: bool) -> "RepositoryCriteriaBuilder":
        return self._set(need_most_recent_commits=need)

    def need_project_phids(self, need: bool) -> "RepositoryCriteriaBuilder":
        return self._set(need_project_phids=need)

    def build(self) -> RepositoryCriteria:
        return self._criteria

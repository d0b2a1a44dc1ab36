"""
Capabilities the repository query depends on.

The query compiler and executor are written against these protocols
rather than concrete services:

- PolicyFilter: viewer visibility, as SQL predicates and as a filter over
  loaded rows. Composed into the same stage as the other predicates.
- CommitLookup: batched commit loading for most-recent-commit enrichment.
- AssociationLookup: batched association loading (repository -> projects).

Each collaborator is called at most once per loaded page with the full
batch of keys, never once per repository.
"""

from collections.abc import Collection, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy import ColumnElement

if TYPE_CHECKING:
    from repo_registry.db.models import CommitInfo, Repository


@runtime_checkable
class PolicyFilter(Protocol):
    """Visibility enforcement point for repository queries."""

    def where_clauses(self) -> list[ColumnElement[bool]]:
        """SQL predicates ANDed into the compiled WHERE clause."""
        ...

    def filter_loaded(self, repositories: Sequence["Repository"]) -> list["Repository"]:
        """Drop loaded repositories the viewer may not see."""
        ...


class AllowAllPolicy:
    """Policy that lets every repository through."""

    def where_clauses(self) -> list[ColumnElement[bool]]:
        return []

    def filter_loaded(self, repositories: Sequence["Repository"]) -> list["Repository"]:
        return list(repositories)


@runtime_checkable
class CommitLookup(Protocol):
    async def fetch_by_ids(self, ids: Collection[int]) -> dict[int, "CommitInfo"]:
        """Load commits by ID. Missing IDs are absent from the result."""
        ...


@runtime_checkable
class AssociationLookup(Protocol):
    async def fetch_associated_handles(
        self, handles: Collection[str]
    ) -> dict[str, set[str]]:
        """Map each source PHID to the set of PHIDs associated with it."""
        ...

"""
Compiles RepositoryCriteria into a single SQLAlchemy SELECT.

The statement selects repositories, optionally LEFT JOINs the per-repository
commit summary, applies every predicate that can be evaluated by the store,
orders by the active vector and bounds the page with a keyset predicate.
"""

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import ColumnElement, Select, or_, select

from repo_registry.db.models import Repository, RepositorySummary
from repo_registry.repos.capabilities import AllowAllPolicy, PolicyFilter
from repo_registry.repos.criteria import RepositoryCriteria
from repo_registry.repos.ordering import REPOSITORY_ORDERABLE_COLUMNS
from repo_registry.repos.pagination import (
    OrderableColumn,
    build_order_clauses,
    build_paging_clause,
)

logger = logging.getLogger(__name__)

# Prefix that marks a repository reference in typeahead input ("rXYZ").
REPOSITORY_REFERENCE_PREFIX = "r"


class RepositoryQueryCompiler:
    """Turns criteria into a SELECT statement.

    Args:
        criteria: Frozen query criteria
        policy: Visibility predicates to compose into the WHERE clause
        orderable: Orderable columns by key
    """

    def __init__(
        self,
        criteria: RepositoryCriteria,
        *,
        policy: PolicyFilter | None = None,
        orderable: Mapping[str, OrderableColumn] = REPOSITORY_ORDERABLE_COLUMNS,
    ) -> None:
        self.criteria = criteria
        self.policy = policy or AllowAllPolicy()
        self.orderable = orderable

    def should_join_summary_table(self) -> bool:
        return self.criteria.needs_summary_join

    def build_select_clause(self) -> Select:
        if self.should_join_summary_table():
            return select(
                Repository,
                RepositorySummary.size,
                RepositorySummary.epoch,
                RepositorySummary.last_commit_id,
            )
        return select(Repository)

    def build_join_clause(self, stmt: Select) -> Select:
        if self.should_join_summary_table():
            stmt = stmt.outerjoin(
                RepositorySummary, Repository.id == RepositorySummary.repository_id
            )
        return stmt

    def build_identifier_clauses(self) -> list[ColumnElement[bool]]:
        """Identifier predicates.

        A non-empty identifier partition replaces the explicit ID, PHID and
        callsign predicates with a single OR over the partition.
        """
        identifiers = self.criteria.identifiers
        if identifiers:
            identifier_clause = []
            if identifiers.numeric:
                identifier_clause.append(Repository.id.in_(sorted(identifiers.numeric)))
            if identifiers.callsigns:
                identifier_clause.append(Repository.callsign.in_(sorted(identifiers.callsigns)))
            if identifiers.phids:
                identifier_clause.append(Repository.phid.in_(sorted(identifiers.phids)))
            return [or_(*identifier_clause)]

        where: list[ColumnElement[bool]] = []
        if self.criteria.ids:
            where.append(Repository.id.in_(sorted(self.criteria.ids)))
        if self.criteria.phids:
            where.append(Repository.phid.in_(sorted(self.criteria.phids)))
        if self.criteria.callsigns:
            where.append(Repository.callsign.in_(sorted(self.criteria.callsigns)))
        return where

    def build_datasource_clause(self, query: str) -> ColumnElement[bool] | None:
        # "rP" matches callsigns starting with "P" as well as names containing "rP".
        query = query.strip()
        if not query:
            return None
        if query.startswith(REPOSITORY_REFERENCE_PREFIX):
            callsign = query[len(REPOSITORY_REFERENCE_PREFIX) :]
        else:
            callsign = query
        return or_(
            Repository.name.icontains(query, autoescape=True),
            Repository.callsign.istartswith(callsign, autoescape=True),
        )

    def build_where_clauses(
        self,
        paging_values: Mapping[str, Any] | None = None,
        *,
        query_reversed: bool = False,
    ) -> list[ColumnElement[bool]]:
        criteria = self.criteria
        where = list(self.policy.where_clauses())

        if paging_values is not None:
            paging_clause = build_paging_clause(
                criteria.order,
                self.orderable,
                paging_values,
                query_reversed=query_reversed,
            )
            if paging_clause is not None:
                where.append(paging_clause)

        where.extend(self.build_identifier_clauses())

        if criteria.types:
            where.append(Repository.vcs.in_(sorted(t.value for t in criteria.types)))

        if criteria.uuids:
            where.append(Repository.uuid.in_(sorted(criteria.uuids)))

        if criteria.name_contains:
            where.append(Repository.name.icontains(criteria.name_contains, autoescape=True))

        if criteria.datasource_query:
            datasource_clause = self.build_datasource_clause(criteria.datasource_query)
            if datasource_clause is not None:
                where.append(datasource_clause)

        return where

    def compile(
        self,
        *,
        limit: int | None = None,
        paging_values: Mapping[str, Any] | None = None,
        query_reversed: bool = False,
    ) -> Select:
        """Build the full statement.

        Args:
            limit: Row limit, usually the page size plus one
            paging_values: Order-key values of the boundary row, or None for
                the first page
            query_reversed: True when paging backwards

        Returns:
            SELECT statement ready to execute
        """
        stmt = self.build_join_clause(self.build_select_clause())

        where = self.build_where_clauses(paging_values, query_reversed=query_reversed)
        if where:
            stmt = stmt.where(*where)

        stmt = stmt.order_by(
            *build_order_clauses(
                self.criteria.order, self.orderable, query_reversed=query_reversed
            )
        )

        if limit is not None:
            stmt = stmt.limit(limit)

        logger.debug(
            "Compiled repository query",
            extra={
                "order": self.criteria.order.as_strings(),
                "summary_join": self.should_join_summary_table(),
                "paged": paging_values is not None,
            },
        )
        return stmt

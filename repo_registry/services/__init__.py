"""
Enrichment services consumed by the repository query.

Default, SQL-backed implementations of the CommitLookup and
AssociationLookup capabilities.
"""

from repo_registry.services.commit_lookup import SqlCommitLookup
from repo_registry.services.project_edges import SqlProjectEdgeLookup

__all__ = [
    "SqlCommitLookup",
    "SqlProjectEdgeLookup",
]

"""
Domain enums for the repository registry.

These enums provide type-safe representations of stored values and query
filter options, and are used throughout the application for validation.
"""

from enum import Enum


class VCSType(str, Enum):
    """Version control system of a repository - matches repository.vcs."""

    GIT = "git"
    SVN = "svn"
    MERCURIAL = "hg"


class RepositoryStatus(str, Enum):
    """Tracking status filter applied after rows are loaded."""

    OPEN = "status-open"
    CLOSED = "status-closed"
    ALL = "status-all"


class HostingFilter(str, Enum):
    """Hosting filter applied after rows are loaded."""

    PHABRICATOR = "hosted-phab"
    REMOTE = "hosted-remote"
    ALL = "hosted-all"


# Short spellings accepted by the query builder and the HTTP API.
STATUS_ALIASES = {
    "open": RepositoryStatus.OPEN,
    "closed": RepositoryStatus.CLOSED,
    "all": RepositoryStatus.ALL,
}

HOSTING_ALIASES = {
    "phabricator-hosted": HostingFilter.PHABRICATOR,
    "hosted": HostingFilter.PHABRICATOR,
    "remote": HostingFilter.REMOTE,
    "all": HostingFilter.ALL,
}


class ColumnType(str, Enum):
    """Comparison type of an orderable column."""

    INT = "int"
    STRING = "string"


class NullPolicy(str, Enum):
    """Where NULL values of an orderable column sort in its default direction."""

    HEAD = "head"
    TAIL = "tail"

"""
Domain-specific exceptions for the Repository Registry API.

These exceptions represent query configuration and lookup failures and are
mapped to appropriate HTTP status codes in the API layer.
"""

from typing import Any


class RepoRegistryError(Exception):
    """Base exception for all repository registry domain errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(RepoRegistryError):
    """
    Raised when input data fails validation.

    HTTP Status: 400 Bad Request
    """

    pass


class ConfigurationError(RepoRegistryError):
    """
    Raised when a query is configured with values it cannot honour.

    Raised while the criteria are being built, never from the middle of
    query execution.

    HTTP Status: 400 Bad Request
    """

    pass


class UnknownFilterValueError(ConfigurationError):
    """
    Raised for an unknown status or hosting filter value.

    Examples:
    - with_status("status-archived")
    - with_hosted("hosted-elsewhere")
    """

    pass


class InvalidOrderError(ValidationError):
    """
    Raised when an order vector references an unknown key or repeats one.
    """

    pass


class InvalidCursorError(ValidationError):
    """
    Raised when a cursor cannot be decoded or does not match the active order.
    """

    pass


class NotFoundError(RepoRegistryError):
    """
    Raised when a requested resource does not exist.

    HTTP Status: 404 Not Found
    """

    pass


class CursorObjectNotFoundError(NotFoundError):
    """
    Raised when the repository a cursor points at can no longer be loaded.

    The paging boundary is rebuilt from that repository, so the request
    cannot continue.
    """

    pass


class QueryStateError(RepoRegistryError):
    """
    Raised when query results are read in the wrong lifecycle state.

    Examples:
    - Reading the identifier map before execute()

    HTTP Status: 500 Internal Server Error
    """

    pass


class DataNotAttachedError(QueryStateError):
    """
    Raised when derived repository data is read without having been attached.

    Examples:
    - Reading commit_count from a query that did not request commit counts
    """

    pass


# HTTP Status Code Mapping
ERROR_STATUS_MAP = {
    ValidationError: 400,
    InvalidOrderError: 400,
    InvalidCursorError: 400,
    ConfigurationError: 400,
    UnknownFilterValueError: 400,
    NotFoundError: 404,
    CursorObjectNotFoundError: 404,
    QueryStateError: 500,
    DataNotAttachedError: 500,
}


def get_status_code(error: Exception) -> int:
    """
    Get the HTTP status code for a given exception.

    Args:
        error: The exception instance

    Returns:
        HTTP status code (defaults to 500 for unknown errors)
    """
    return ERROR_STATUS_MAP.get(type(error), 500)

"""
Pydantic schemas for API request/response validation.

This package contains schema definitions used by the repository
listing endpoints.
"""

# Re-export schemas for convenient imports.
from .keyset_pagination import CursorDirection as CursorDirection
from .keyset_pagination import KeysetPaginatedResponse as KeysetPaginatedResponse
from .repository import (
    RepositoryCommitResponse as RepositoryCommitResponse,
)
from .repository import (
    RepositoryPageResponse as RepositoryPageResponse,
)
from .repository import (
    RepositoryResponse as RepositoryResponse,
)

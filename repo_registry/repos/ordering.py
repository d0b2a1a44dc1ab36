"""
Orderable columns and builtin orders for repository queries.

Each builtin order names an order vector. Vectors without a unique column
are terminated with the repository ID, so every order is total.
"""

from repo_registry.db.models import Repository, RepositorySummary
from repo_registry.domain.enums import ColumnType, NullPolicy
from repo_registry.repos.pagination import OrderableColumn, OrderVector, parse_order_vector

REPOSITORY_ORDERABLE_COLUMNS: dict[str, OrderableColumn] = {
    "id": OrderableColumn(
        key="id",
        column=Repository.id,
        type=ColumnType.INT,
        unique=True,
    ),
    "committed": OrderableColumn(
        key="committed",
        column=RepositorySummary.epoch,
        type=ColumnType.INT,
        null=NullPolicy.TAIL,
    ),
    # Callsigns are optional, so they are not a total order on their own.
    # Repositories without one sort after every callsign.
    "callsign": OrderableColumn(
        key="callsign",
        column=Repository.callsign,
        type=ColumnType.STRING,
        null=NullPolicy.HEAD,
        reverse=True,
    ),
    "name": OrderableColumn(
        key="name",
        column=Repository.name,
        type=ColumnType.STRING,
        reverse=True,
    ),
    "size": OrderableColumn(
        key="size",
        column=RepositorySummary.size,
        type=ColumnType.INT,
        null=NullPolicy.TAIL,
    ),
}

BUILTIN_ORDERS: dict[str, dict[str, object]] = {
    "newest": {"vector": ["id"], "name": "Creation (Newest First)"},
    "oldest": {"vector": ["-id"], "name": "Creation (Oldest First)"},
    "committed": {"vector": ["committed", "id"], "name": "Most Recent Commit"},
    "name": {"vector": ["name", "id"], "name": "Name"},
    "callsign": {"vector": ["callsign", "id"], "name": "Callsign"},
    "size": {"vector": ["size", "id"], "name": "Size"},
}

DEFAULT_ORDER = "newest"


def repository_order_vector(order: str | list[str] | tuple[str, ...] | None) -> OrderVector:
    """Resolve a builtin order name or an explicit list of keys to a vector.

    Raises:
        InvalidOrderError: Unknown order name or key
    """
    if order is None:
        order = DEFAULT_ORDER

    if isinstance(order, str):
        builtin = BUILTIN_ORDERS.get(order)
        items = builtin["vector"] if builtin else [order]
    else:
        items = list(order)

    return parse_order_vector(items, REPOSITORY_ORDERABLE_COLUMNS)

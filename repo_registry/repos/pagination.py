"""Shared utilities for keyset/cursor-based pagination over ordered columns.

A page boundary is the tuple of order-column values of the last row of the
previous page. The next page is every row that sorts strictly after that
tuple, which is expanded into

    (k1 after v1)
    OR (k1 = v1 AND k2 after v2)
    OR (k1 = v1 AND k2 = v2 AND k3 after v3) ...

where "after" depends on each column's direction and null policy.
"""

import base64
import binascii
import json
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from sqlalchemy import ColumnElement, and_, or_

from repo_registry.api.schemas.keyset_pagination import CursorDirection
from repo_registry.core.errors import InvalidCursorError, InvalidOrderError
from repo_registry.domain.enums import ColumnType, NullPolicy

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class OrderableColumn:
    """A column a query can be ordered and paged by.

    Every column sorts descending unless `reverse` is set, in which case it
    sorts ascending. `null` says where NULLs sort in that default direction.
    """

    key: str
    column: Any
    type: ColumnType
    null: NullPolicy | None = None
    reverse: bool = False
    unique: bool = False


@dataclass(frozen=True, slots=True)
class OrderPart:
    """One element of an order vector. A leading "-" flips its direction."""

    key: str
    reversed: bool = False

    @classmethod
    def parse(cls, text: str) -> "OrderPart":
        text = text.strip()
        if text.startswith("-"):
            return cls(key=text[1:], reversed=True)
        return cls(key=text)

    def __str__(self) -> str:
        return f"-{self.key}" if self.reversed else self.key


@dataclass(frozen=True, slots=True)
class OrderVector:
    """Ordered, duplicate-free list of order parts ending in a unique column."""

    parts: tuple[OrderPart, ...]

    def contains_key(self, key: str) -> bool:
        return any(part.key == key for part in self.parts)

    def keys(self) -> list[str]:
        return [part.key for part in self.parts]

    def as_strings(self) -> list[str]:
        return [str(part) for part in self.parts]

    def __iter__(self):
        return iter(self.parts)

    def __len__(self) -> int:
        return len(self.parts)


def parse_order_vector(
    items: Iterable[str],
    orderable: Mapping[str, OrderableColumn],
    *,
    tie_breaker: str = "id",
) -> OrderVector:
    """Build an order vector, validating keys against the orderable columns.

    If no element refers to a unique column the vector is terminated with
    the tie-breaker column so the resulting order is total.

    Raises:
        InvalidOrderError: For an empty vector, an unknown key or a repeated key
    """
    parts = [OrderPart.parse(item) for item in items]
    if not parts:
        raise InvalidOrderError("Order vector must not be empty")

    seen: set[str] = set()
    for part in parts:
        if part.key not in orderable:
            raise InvalidOrderError(
                f"Unknown order key '{part.key}'",
                details={"key": part.key, "valid_keys": sorted(orderable)},
            )
        if part.key in seen:
            raise InvalidOrderError(
                f"Order key '{part.key}' appears more than once",
                details={"key": part.key},
            )
        seen.add(part.key)

    if not any(orderable[part.key].unique for part in parts):
        parts.append(OrderPart(tie_breaker))

    return OrderVector(tuple(parts))


def _is_descending(column: OrderableColumn, part: OrderPart, query_reversed: bool) -> bool:
    descending = True
    if query_reversed:
        descending = not descending
    if column.reverse:
        descending = not descending
    if part.reversed:
        descending = not descending
    return descending


def _nulls_sort_after(column: OrderableColumn, descending: bool) -> bool:
    # The NULL sort term follows the column's direction, so a "tail" column
    # read ascending puts NULLs first.
    return (column.null == NullPolicy.TAIL) == descending


def build_order_clauses(
    vector: OrderVector,
    orderable: Mapping[str, OrderableColumn],
    *,
    query_reversed: bool = False,
) -> list[ColumnElement]:
    """ORDER BY terms for a vector. Nullable columns get a leading NULL-sort term."""
    clauses: list[ColumnElement] = []
    for part in vector:
        column = orderable[part.key]
        descending = _is_descending(column, part, query_reversed)

        if column.null is not None:
            if column.null == NullPolicy.HEAD:
                null_term = column.column.is_(None)
            else:
                null_term = column.column.is_not(None)
            clauses.append(null_term.desc() if descending else null_term.asc())

        clauses.append(column.column.desc() if descending else column.column.asc())
    return clauses


def _coerce_value(column: OrderableColumn, value: Any) -> Any:
    if value is None:
        return None
    if column.type == ColumnType.INT:
        return int(value)
    return str(value)


def build_paging_clause(
    vector: OrderVector,
    orderable: Mapping[str, OrderableColumn],
    values: Mapping[str, Any],
    *,
    query_reversed: bool = False,
) -> ColumnElement[bool] | None:
    """Boundary predicate selecting rows that sort after `values`.

    Args:
        vector: Active order vector
        orderable: Orderable columns by key
        values: Cursor value for each key in the vector
        query_reversed: True when paging backwards

    Returns:
        Predicate, or None when the boundary does not constrain anything

    Raises:
        InvalidCursorError: A value is NULL for a column with no null policy
    """
    clauses: list[ColumnElement[bool]] = []
    accumulated: list[ColumnElement[bool]] = []

    for part in vector:
        column = orderable[part.key]
        if part.key not in values:
            raise InvalidCursorError(
                f"Cursor has no value for order key '{part.key}'", details={"key": part.key}
            )
        value = _coerce_value(column, values[part.key])
        descending = _is_descending(column, part, query_reversed)
        field = column.column

        if value is None and column.null is None:
            raise InvalidCursorError(
                f"Cursor value for '{part.key}' is null but the column has no null ordering",
                details={"key": part.key},
            )

        after: list[ColumnElement[bool]] = []
        if column.null is not None:
            nulls_after = _nulls_sort_after(column, descending)
            if value is None and not nulls_after:
                after.append(field.is_not(None))
            elif value is not None and nulls_after:
                after.append(field.is_(None))

        if value is not None:
            after.append(field < value if descending else field > value)

        if after:
            clauses.append(and_(*accumulated, or_(*after)))

        accumulated.append(field.is_(None) if value is None else field == value)

    if not clauses:
        return None
    return or_(*clauses)


def encode_cursor(id: int, order: Sequence[str]) -> str:
    """Encode a cursor from the last row's ID and the active order vector.

    Args:
        id: Repository ID of the boundary row
        order: Order vector the page was produced with

    Returns:
        URL-safe base64-encoded cursor string
    """
    cursor_data = {"id": int(id), "order": list(order)}
    json_str = json.dumps(cursor_data, separators=(",", ":"))
    return base64.urlsafe_b64encode(json_str.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> tuple[int, list[str]]:
    """Decode a cursor into the boundary ID and its order vector.

    Raises:
        InvalidCursorError: If cursor is invalid or malformed
    """
    try:
        json_str = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        cursor_data = json.loads(json_str)
        id = int(cursor_data["id"])
        order = [str(item) for item in cursor_data["order"]]
        return id, order
    except (
        KeyError,
        TypeError,
        ValueError,
        UnicodeError,
        binascii.Error,
    ) as e:
        raise InvalidCursorError(f"Invalid cursor: {e}", details={"cursor": cursor}) from e


def get_keyset_page_info(
    items: list[T],
    limit: int,
    direction: CursorDirection,
    make_cursor: Callable[[T], str],
    is_first_page: bool = False,
) -> tuple[list[T], bool, bool, str | None, str | None]:
    """Calculate pagination metadata from fetched items and trim the list.

    Items are in fetch order: for PREV that is the reverse of display order.
    The returned list is in display order.

    Args:
        items: List of items fetched (may include extra item)
        limit: Original limit requested
        direction: Pagination direction
        make_cursor: Builds the cursor token for an item
        is_first_page: True if this is the first page (no cursor provided)

    Returns:
        Tuple of (trimmed_items, has_next, has_prev, next_cursor, prev_cursor)
    """
    has_more = len(items) > limit
    if has_more:
        items = items[:limit]

    has_next = False
    has_prev = False
    next_cursor = None
    prev_cursor = None

    if not items:
        return items, has_next, has_prev, next_cursor, prev_cursor

    if direction == CursorDirection.NEXT:
        has_next = has_more
        has_prev = not is_first_page

        if has_next:
            next_cursor = make_cursor(items[-1])
        if has_prev:
            prev_cursor = make_cursor(items[0])

        return items, has_next, has_prev, next_cursor, prev_cursor

    # Backward pagination: items[0] is the row nearest the cursor
    has_prev = has_more
    has_next = True

    if has_prev:
        prev_cursor = make_cursor(items[-1])
    next_cursor = make_cursor(items[0])

    return list(reversed(items)), has_next, has_prev, next_cursor, prev_cursor

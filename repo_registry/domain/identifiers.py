"""
Repository identifier classification.

Callers may refer to a repository by numeric ID ("42"), by callsign ("XYZ")
or by PHID ("PHID-REPO-..."). A mixed list of such tokens is partitioned
into those three id-spaces before the query is compiled.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

# PHIDs look like PHID-TYPE-xxxxxxxxxxxxxxxxxxxx
_PHID_TYPE_PATTERN = re.compile(r"^PHID-([^-]{4})-")

UNKNOWN_PHID_TYPE = "XXXX"
REPOSITORY_PHID_TYPE = "REPO"


def phid_get_type(phid: str) -> str:
    """Return the four-character type constant of a PHID, or UNKNOWN_PHID_TYPE."""
    match = _PHID_TYPE_PATTERN.match(phid)
    if match:
        return match.group(1)
    return UNKNOWN_PHID_TYPE


class IdentifierKind(str, Enum):
    """The id-space an identifier token belongs to."""

    NUMERIC = "numeric"
    CALLSIGN = "callsign"
    PHID = "phid"


@dataclass(frozen=True, slots=True)
class Identifier:
    """A classified identifier token."""

    kind: IdentifierKind
    value: int | str


def classify_identifier(token: str) -> Identifier:
    """Classify one identifier token.

    All ASCII digits is a numeric ID; a PHID of the repository type is a PHID;
    anything else is taken literally as a callsign.
    """
    if token.isascii() and token.isdigit():
        return Identifier(IdentifierKind.NUMERIC, int(token))
    if phid_get_type(token) == REPOSITORY_PHID_TYPE:
        return Identifier(IdentifierKind.PHID, token)
    return Identifier(IdentifierKind.CALLSIGN, token)


@dataclass(frozen=True, slots=True)
class IdentifierPartition:
    """Identifier tokens split into three disjoint id-spaces."""

    numeric: frozenset[int] = field(default_factory=frozenset)
    callsigns: frozenset[str] = field(default_factory=frozenset)
    phids: frozenset[str] = field(default_factory=frozenset)

    def __bool__(self) -> bool:
        return bool(self.numeric or self.callsigns or self.phids)


def classify(tokens: Iterable[str]) -> IdentifierPartition:
    """Partition identifier tokens into numeric IDs, callsigns and PHIDs.

    Duplicate tokens collapse. Every token lands in exactly one set.

    Example:
        >>> classify(["42", "XYZ", "PHID-REPO-xyz"])
        IdentifierPartition(numeric=frozenset({42}), callsigns=frozenset({'XYZ'}), phids=frozenset({'PHID-REPO-xyz'}))
    """
    buckets: dict[IdentifierKind, set] = {kind: set() for kind in IdentifierKind}
    for token in tokens:
        identifier = classify_identifier(token)
        buckets[identifier.kind].add(identifier.value)

    return IdentifierPartition(
        numeric=frozenset(buckets[IdentifierKind.NUMERIC]),
        callsigns=frozenset(buckets[IdentifierKind.CALLSIGN]),
        phids=frozenset(buckets[IdentifierKind.PHID]),
    )

"""
SQLAlchemy 2.x ORM models for the Repository Registry.

Models use the Mapped[] type annotation syntax and mapped_column. The
registry only reads these tables; they are written by the administrative
subsystem that manages repositories.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, reconstructor, relationship

from repo_registry.core.errors import DataNotAttachedError
from repo_registry.domain.uri_normalizer import normalize_uri

# Edge type linking an object to the projects it is tagged with.
PROJECT_EDGE_TYPE = 41

_UNATTACHED = object()


class Base(DeclarativeBase):
    """Base class for all ORM models."""


@dataclass(frozen=True, slots=True)
class CommitInfo:
    """Commit data returned by the commit lookup service."""

    id: int
    epoch: int
    phid: str | None = None
    commit_identifier: str | None = None


class Repository(Base):
    """
    A tracked code repository.

    Tracking and hosting flags live in the `details` JSON document, so
    filtering on them happens after rows are loaded.

    Commit counts, the most recent commit and project PHIDs are derived data
    attached by the query that loaded the repository.
    """

    __tablename__ = "repository"
    __table_args__ = (
        CheckConstraint("vcs IN ('git','svn','hg')", name="chk_repository_vcs"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    phid: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    callsign: Mapped[str | None] = mapped_column(String(32), nullable=True, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    vcs: Mapped[str] = mapped_column(String(8), nullable=False)
    uuid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    date_created: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    uris: Mapped[list[RepositoryURI]] = relationship(
        "RepositoryURI",
        back_populates="repository",
        lazy="selectin",
        order_by="RepositoryURI.id",
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.reset_attachments()

    @reconstructor
    def reset_attachments(self) -> None:
        """Forget data attached by an earlier query."""
        self._commit_count: Any = _UNATTACHED
        self._most_recent_commit: Any = _UNATTACHED
        self._project_phids: Any = _UNATTACHED

    def _get_detail(self, key: str, default: Any = None) -> Any:
        return (self.details or {}).get(key, default)

    @property
    def is_tracked(self) -> bool:
        return bool(self._get_detail("tracking-enabled", False))

    @property
    def is_hosted(self) -> bool:
        return bool(self._get_detail("hosting-enabled", False))

    @property
    def remote_uris(self) -> list[str]:
        return [uri.uri for uri in self.uris]

    @property
    def normalized_paths(self) -> set[str]:
        """Normalized path of every remote URI, under this repository's VCS.

        A hosted repository with a callsign is also reachable through its own
        clone path, "diffusion/<CALLSIGN>".
        """
        paths = {normalize_uri(self.vcs, uri) for uri in self.remote_uris}
        if self.is_hosted and self.callsign:
            paths.add(normalize_uri(self.vcs, f"diffusion/{self.callsign}"))
        return paths

    # ------------------------------------------------------------------
    # Attached data
    # ------------------------------------------------------------------

    def _assert_attached(self, value: Any, name: str) -> Any:
        if value is _UNATTACHED:
            raise DataNotAttachedError(
                f"Repository {name} is not attached; request it on the query",
                details={"repository_id": self.id, "attachment": name},
            )
        return value

    def attach_commit_count(self, count: int) -> Repository:
        self._commit_count = count
        return self

    @property
    def commit_count(self) -> int:
        return self._assert_attached(self._commit_count, "commit_count")

    def attach_most_recent_commit(self, commit: CommitInfo | None) -> Repository:
        self._most_recent_commit = commit
        return self

    @property
    def most_recent_commit(self) -> CommitInfo | None:
        return self._assert_attached(self._most_recent_commit, "most_recent_commit")

    def attach_project_phids(self, phids: set[str]) -> Repository:
        self._project_phids = set(phids)
        return self

    @property
    def project_phids(self) -> set[str]:
        return self._assert_attached(self._project_phids, "project_phids")

    def has_attached(self, name: str) -> bool:
        return getattr(self, f"_{name}", _UNATTACHED) is not _UNATTACHED

    def __repr__(self) -> str:
        return f"<Repository(id={self.id}, callsign={self.callsign}, vcs={self.vcs})>"


class RepositoryURI(Base):
    """A remote URI a repository is observed or mirrored from."""

    __tablename__ = "repository_uri"
    __table_args__ = (UniqueConstraint("repository_id", "uri", name="uq_repository_uri"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("repository.id", ondelete="CASCADE"), nullable=False, index=True
    )
    uri: Mapped[str] = mapped_column(Text, nullable=False)

    repository: Mapped[Repository] = relationship("Repository", back_populates="uris")

    def __repr__(self) -> str:
        return f"<RepositoryURI(repository_id={self.repository_id}, uri={self.uri})>"


class RepositorySummary(Base):
    """
    Per-repository commit summary, maintained by the importer.

    Joined (LEFT OUTER) only when commit counts, the most recent commit, or an
    order on either is requested.
    """

    __tablename__ = "repository_summary"

    repository_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("repository.id", ondelete="CASCADE"), primary_key=True
    )
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_commit_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    epoch: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    def __repr__(self) -> str:
        return f"<RepositorySummary(repository_id={self.repository_id}, size={self.size})>"


class RepositoryCommit(Base):
    """An imported commit. Read by the default commit lookup service."""

    __tablename__ = "repository_commit"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("repository.id", ondelete="CASCADE"), nullable=False, index=True
    )
    phid: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    commit_identifier: Mapped[str] = mapped_column(String(40), nullable=False)
    epoch: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def to_commit_info(self) -> CommitInfo:
        return CommitInfo(
            id=self.id,
            epoch=self.epoch,
            phid=self.phid,
            commit_identifier=self.commit_identifier,
        )

    def __repr__(self) -> str:
        return f"<RepositoryCommit(id={self.id}, commit_identifier={self.commit_identifier})>"


class Edge(Base):
    """Typed association between two objects, keyed by PHID."""

    __tablename__ = "edge"

    src: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[int] = mapped_column(Integer, primary_key=True)
    dst: Mapped[str] = mapped_column(String(64), primary_key=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    date_created: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    def __repr__(self) -> str:
        return f"<Edge(src={self.src}, type={self.type}, dst={self.dst})>"

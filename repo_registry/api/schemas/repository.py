from __future__ import annotations

from pydantic import BaseModel, Field

from repo_registry.api.schemas.keyset_pagination import KeysetPaginatedResponse
from repo_registry.db.models import CommitInfo, Repository


class RepositoryCommitResponse(BaseModel):
    id: int
    epoch: int
    phid: str | None = None
    commit_identifier: str | None = None

    @classmethod
    def from_commit(cls, commit: CommitInfo) -> RepositoryCommitResponse:
        return cls(
            id=commit.id,
            epoch=commit.epoch,
            phid=commit.phid,
            commit_identifier=commit.commit_identifier,
        )


class RepositoryResponse(BaseModel):
    id: int
    phid: str
    callsign: str | None
    name: str
    vcs: str
    uuid: str | None = None
    is_tracked: bool
    is_hosted: bool
    remote_uris: list[str] = Field(default_factory=list)
    normalized_paths: list[str] = Field(default_factory=list)

    # Present only when the query attached them
    commit_count: int | None = None
    most_recent_commit: RepositoryCommitResponse | None = None
    project_phids: list[str] | None = None

    @classmethod
    def from_repository(cls, repository: Repository) -> RepositoryResponse:
        commit = None
        if repository.has_attached("most_recent_commit") and repository.most_recent_commit:
            commit = RepositoryCommitResponse.from_commit(repository.most_recent_commit)

        return cls(
            id=repository.id,
            phid=repository.phid,
            callsign=repository.callsign,
            name=repository.name,
            vcs=repository.vcs,
            uuid=repository.uuid,
            is_tracked=repository.is_tracked,
            is_hosted=repository.is_hosted,
            remote_uris=repository.remote_uris,
            normalized_paths=sorted(repository.normalized_paths),
            commit_count=(
                repository.commit_count if repository.has_attached("commit_count") else None
            ),
            most_recent_commit=commit,
            project_phids=(
                sorted(repository.project_phids)
                if repository.has_attached("project_phids")
                else None
            ),
        )


class RepositoryPageResponse(KeysetPaginatedResponse[RepositoryResponse]):
    """A page of repositories plus the identifier -> repository ID map."""

    identifier_map: dict[str, int] = Field(default_factory=dict)

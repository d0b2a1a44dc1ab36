"""
Pytest configuration and shared fixtures.

Provides:
- AnyIO backend selection
- A throwaway SQLite database per test (async SQLAlchemy via aiosqlite)
- Seed helpers that write repositories, summaries, commits and project edges
- A standard five-repository registry used by the integration tests

Async SQLAlchemy Fixtures:
- async_engine: Function-scoped engine over a fresh SQLite file
- session_maker: Sessionmaker bound to async_engine
- async_db_session: Session used by the code under test
- seeded_registry: Commits the standard registry in its own session

Seed data is always written and committed in a session of its own, so the
session under test starts with an empty identity map.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass

# Set test environment variables before importing the package
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL_APP", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OBSERVABILITY_STRUCTURED_LOGS", "false")

import pytest  # noqa: E402 (import after env setup)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from repo_registry.core.db import create_fresh_async_engine, reset_async_engine  # noqa: E402
from repo_registry.db.models import (  # noqa: E402
    PROJECT_EDGE_TYPE,
    Base,
    Edge,
    Repository,
    RepositoryCommit,
    RepositorySummary,
    RepositoryURI,
)

# =============================================================================
# AnyIO Backend Configuration
# =============================================================================
# Per AnyIO testing docs: https://anyio.readthedocs.io/en/stable/testing.html


@pytest.fixture
def anyio_backend():
    return "asyncio"


# ============================================================================
# Async SQLAlchemy Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
async def reset_async_engine_before_test(anyio_backend):
    """Drop the cached application engine so no connection outlives its event loop."""
    await reset_async_engine()
    yield
    await reset_async_engine()


@pytest.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """
    Create a fresh SQLite database with the full schema.

    A file database (rather than :memory:) keeps the data visible to every
    connection the pool hands out.
    """
    engine = create_fresh_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'registry.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture(scope="function")
async def async_db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Session handed to the code under test."""
    async with session_maker() as session:
        yield session


# ============================================================================
# Seed Helpers
# ============================================================================


async def acreate_repository_in_db(
    session: AsyncSession,
    *,
    name: str,
    callsign: str | None = None,
    vcs: str = "git",
    tracked: bool = True,
    hosted: bool = False,
    uris: Sequence[str] = (),
    uuid_value: str | None = None,
    size: int | None = None,
    last_commit_epoch: int | None = None,
    project_phids: Sequence[str] = (),
) -> Repository:
    """
    Create a repository using AsyncSession.

    A summary row is written when `size` is given; it points at a freshly
    written commit when `last_commit_epoch` is given too.
    """
    repository = Repository(
        phid=f"PHID-REPO-{uuid.uuid4().hex[:20]}",
        callsign=callsign,
        name=name,
        vcs=vcs,
        uuid=uuid_value,
        details={"tracking-enabled": tracked, "hosting-enabled": hosted},
    )
    session.add(repository)
    await session.flush()

    for uri in uris:
        session.add(RepositoryURI(repository_id=repository.id, uri=uri))

    if size is not None:
        last_commit_id = None
        if last_commit_epoch is not None:
            commit = RepositoryCommit(
                repository_id=repository.id,
                phid=f"PHID-CMIT-{uuid.uuid4().hex[:20]}",
                commit_identifier=uuid.uuid4().hex,
                epoch=last_commit_epoch,
            )
            session.add(commit)
            await session.flush()
            last_commit_id = commit.id
        session.add(
            RepositorySummary(
                repository_id=repository.id,
                size=size,
                last_commit_id=last_commit_id,
                epoch=last_commit_epoch,
            )
        )

    for seq, project_phid in enumerate(project_phids):
        session.add(
            Edge(src=repository.phid, type=PROJECT_EDGE_TYPE, dst=project_phid, seq=seq)
        )

    await session.flush()
    return repository


@dataclass
class SeededRegistry:
    """Handles of the standard registry, keyed by repository name."""

    alpha: Repository
    beta: Repository
    gamma: Repository
    delta: Repository
    epsilon: Repository

    def ids(self, *repositories: Repository) -> list[int]:
        return [r.id for r in repositories]


@pytest.fixture(scope="function")
async def seeded_registry(session_maker: async_sessionmaker[AsyncSession]) -> SeededRegistry:
    """
    Standard registry, inserted in ID order:

    | id | name    | callsign | vcs | tracked | hosted | size | last commit |
    |----|---------|----------|-----|---------|--------|------|-------------|
    | 1  | Alpha   | ALPHA    | git | yes     | no     | 10   | 1000        |
    | 2  | Beta    | BETA     | git | yes     | yes    | 5    | 3000        |
    | 3  | Gamma   | -        | svn | no      | no     | -    | -           |
    | 4  | Delta   | DELTA    | hg  | no      | no     | 0    | -           |
    | 5  | Epsilon | EPS      | git | yes     | no     | 20   | 2000        |
    """
    async with session_maker() as session:
        alpha = await acreate_repository_in_db(
            session,
            name="Alpha",
            callsign="ALPHA",
            uris=["git@github.com:acme/alpha.git"],
            uuid_value="uuid-alpha",
            size=10,
            last_commit_epoch=1000,
        )
        beta = await acreate_repository_in_db(
            session,
            name="Beta",
            callsign="BETA",
            hosted=True,
            size=5,
            last_commit_epoch=3000,
        )
        gamma = await acreate_repository_in_db(
            session,
            name="Gamma",
            vcs="svn",
            tracked=False,
            uris=["svn+ssh://svn.example.com/gamma/"],
        )
        delta = await acreate_repository_in_db(
            session,
            name="Delta",
            callsign="DELTA",
            vcs="hg",
            tracked=False,
            uris=["https://hg.example.com/delta"],
            size=0,
        )
        epsilon = await acreate_repository_in_db(
            session,
            name="Epsilon",
            callsign="EPS",
            uris=["https://github.com/acme/epsilon.git"],
            size=20,
            last_commit_epoch=2000,
            project_phids=["PHID-PROJ-backend", "PHID-PROJ-infra"],
        )
        await session.commit()

    return SeededRegistry(alpha=alpha, beta=beta, gamma=gamma, delta=delta, epsilon=epsilon)


# ============================================================================
# API Client Fixtures
# ============================================================================


@pytest.fixture
async def api_client(session_maker: async_sessionmaker[AsyncSession]):
    """HTTP client for the app, with database sessions bound to the test database."""
    from httpx import ASGITransport, AsyncClient

    from repo_registry.core.dependencies import get_async_db_session
    from repo_registry.main import create_app

    app = create_app()

    async def override_get_async_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_db_session] = override_get_async_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

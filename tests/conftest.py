"""Pytest configuration and fixtures."""

from typing import Any

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from matrixci.models import (
    Base,
    Build,
    Commit,
    Repository,
    User,
    UserOwner,
    new_build,
    new_repository,
)


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    # One shared in-memory SQLite connection for every session of a test
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs work with pysqlite
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine, passed to the services."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory):
    """Persist instances in their own committed transaction."""

    async def _seed(*instances: Any) -> None:
        async with session_factory() as session:
            session.add_all(instances)
            await session.commit()

    return _seed


@pytest.fixture
def fetch(session_factory):
    """Load a fresh copy of a row, outside of any service transaction."""

    async def _fetch(model: type, key: int) -> Any:
        async with session_factory() as session:
            return await session.get(model, key)

    return _fetch


@pytest.fixture
async def user(seed) -> User:
    user = User(login="svenfuchs", name="Sven Fuchs", github_oauth_token="github-token")
    await seed(user)
    return user


@pytest.fixture
async def repository(seed, user) -> Repository:
    repository = new_repository(
        "svenfuchs",
        "minimal",
        owner=UserOwner(user.id),
        active=True,
    )
    await seed(repository)
    return repository


@pytest.fixture
def make_build(seed):
    """Create a build and its jobs; ``jobs`` holds attribute overrides per job."""

    async def _make_build(
        repository: Repository,
        number: str = "1",
        matrix: list[dict[str, Any]] | None = None,
        jobs: list[dict[str, Any]] | None = None,
        branch: str = "master",
        event_type: str = "push",
        **attrs: Any,
    ) -> Build:
        commit = Commit(
            repository_id=repository.id,
            commit="62aae5f70ceee39123ef",
            branch=branch,
            message="the commit message",
            compare_url="https://github.com/svenfuchs/minimal/compare/master...develop",
        )
        build = new_build(
            repository,
            number=number,
            commit=commit,
            event_type=event_type,
            config={"rvm": ["1.9.3"]},
            matrix=matrix,
        )
        for key, value in attrs.items():
            setattr(build, key, value)
        for job, job_attrs in zip(build.matrix, jobs or []):
            for key, value in job_attrs.items():
                setattr(job, key, value)
        await seed(build)
        return build

    return _make_build

"""Transactional access to repositories, builds, jobs and permissions."""

import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..database import async_session_factory
from ..errors import ConflictError, PersistenceError
from ..models import (
    FINISHED_STATES,
    Build,
    BuildState,
    Job,
    KeyPair,
    Organization,
    Permission,
    Repository,
    SslKey,
    User,
    new_repository,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator["StateStore"]:
    """
    Run a block in one database transaction.

    Commits when the block exits normally and rolls back on any exception.
    SQLAlchemy errors leave as PersistenceError; everything else is re-raised
    unchanged after the rollback.
    """
    factory = session_factory or async_session_factory
    try:
        async with factory() as session:
            async with session.begin():
                yield StateStore(session)
    except SQLAlchemyError as e:
        raise PersistenceError(str(e)) from e


class StateStore:
    """CRUD-by-key access to the CI state, bound to one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Repositories

    async def find_repository(self, owner_name: str, name: str) -> Repository | None:
        result = await self.session.execute(
            select(Repository).where(
                Repository.owner_name == owner_name,
                Repository.name == name,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_repository(
        self,
        owner_name: str,
        name: str,
        **attrs: Any,
    ) -> tuple[Repository, bool]:
        """Return the repository and whether it was created."""
        repository = await self.find_repository(owner_name, name)
        if repository is not None:
            return repository, False

        return await self._insert_or_reload(
            new_repository(owner_name, name, **attrs),
            lambda: self.find_repository(owner_name, name),
        )

    async def get_repository(self, repository_id: int, lock: bool = False) -> Repository | None:
        return await self._get(Repository, repository_id, lock)

    async def replace_key(self, repository: Repository, key: KeyPair) -> SslKey:
        """Swap the repository's key pair for a new one."""
        await self.session.execute(delete(SslKey).where(SslKey.repository_id == repository.id))
        ssl_key = SslKey(
            repository_id=repository.id,
            public_key=key.public_key,
            private_key=key.private_key,
        )
        self.session.add(ssl_key)
        await self.session.flush()
        return ssl_key

    # Users and permissions

    async def get_user(self, user_id: int, lock: bool = False) -> User | None:
        return await self._get(User, user_id, lock)

    async def find_organization(self, login: str) -> Organization | None:
        result = await self.session.execute(
            select(Organization).where(Organization.login == login)
        )
        return result.scalar_one_or_none()

    async def find_permission(self, user_id: int, repository_id: int) -> Permission | None:
        result = await self.session.execute(
            select(Permission).where(
                Permission.user_id == user_id,
                Permission.repository_id == repository_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_permission(
        self,
        user_id: int,
        repository_id: int,
        *,
        admin: bool = False,
        push: bool = False,
        pull: bool = False,
    ) -> tuple[Permission, bool]:
        """Return the permission and whether it was created."""
        permission = await self.find_permission(user_id, repository_id)
        if permission is not None:
            return permission, False

        return await self._insert_or_reload(
            Permission(
                user_id=user_id,
                repository_id=repository_id,
                admin=admin,
                push=push,
                pull=pull,
            ),
            lambda: self.find_permission(user_id, repository_id),
        )

    async def delete_permissions_except(
        self,
        user_id: int,
        repository_ids: Iterable[int],
    ) -> int:
        """Delete the user's permissions on repositories not listed. Returns the count."""
        stmt = delete(Permission).where(Permission.user_id == user_id)
        keep = list(repository_ids)
        if keep:
            stmt = stmt.where(Permission.repository_id.not_in(keep))
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    # Builds and jobs

    async def get_build(self, build_id: int, lock: bool = False) -> Build | None:
        return await self._get(Build, build_id, lock)

    async def get_job(self, job_id: int, lock: bool = False) -> Job | None:
        return await self._get(Job, job_id, lock)

    async def jobs_for_build(self, build_id: int) -> list[Job]:
        result = await self.session.execute(
            select(Job).where(Job.build_id == build_id).order_by(Job.position, Job.id)
        )
        return list(result.scalars().all())

    async def jobs_for_builds(self, build_ids: Iterable[int]) -> dict[int, list[Job]]:
        result = await self.session.execute(
            select(Job)
            .where(Job.build_id.in_(list(build_ids)))
            .order_by(Job.build_id, Job.position, Job.id)
        )
        jobs: dict[int, list[Job]] = defaultdict(list)
        for job in result.scalars().all():
            jobs[job.build_id].append(job)
        return jobs

    async def queueable_jobs(self) -> list[Job]:
        """
        Jobs waiting to be dispatched, oldest first.

        Rows locked by a concurrent enqueue round are skipped.
        """
        result = await self.session.execute(
            select(Job)
            .join(Build, Job.build_id == Build.id)
            .join(Repository, Job.repository_id == Repository.id)
            .where(
                Job.state.in_([BuildState.CREATED, BuildState.QUEUED]),
                Job.queued_at.is_(None),
                Build.state.not_in(list(FINISHED_STATES)),
                Repository.active.is_(True),
            )
            .options(selectinload(Job.repository), selectinload(Job.commit))
            .order_by(Job.id)
            .with_for_update(of=Job, skip_locked=True)
        )
        return list(result.scalars().all())

    async def running_job_counts(self) -> tuple[dict[str, int], dict[int, int]]:
        """Count dispatched or started jobs per owner name and per repository."""
        running = or_(
            Job.state == BuildState.STARTED,
            and_(Job.state == BuildState.QUEUED, Job.queued_at.is_not(None)),
        )
        result = await self.session.execute(
            select(Repository.owner_name, Repository.id, func.count(Job.id))
            .join(Repository, Job.repository_id == Repository.id)
            .where(running)
            .group_by(Repository.owner_name, Repository.id)
        )
        by_owner: dict[str, int] = defaultdict(int)
        by_repository: dict[int, int] = defaultdict(int)
        for owner_name, repository_id, count in result.all():
            by_owner[owner_name] += count
            by_repository[repository_id] += count
        return by_owner, by_repository

    async def release_jobs(self, job_ids: Iterable[int]) -> int:
        """Return queued jobs that never reached the queue to ``created``."""
        ids = list(job_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            update(Job)
            .where(Job.id.in_(ids), Job.state == BuildState.QUEUED)
            .values(state=BuildState.CREATED, queued_at=None)
        )
        return result.rowcount or 0

    async def save(self, instance: ModelT) -> ModelT:
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def _get(self, model: type[ModelT], key: int, lock: bool) -> ModelT | None:
        stmt = select(model).where(model.id == key)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def _insert_or_reload(
        self,
        instance: ModelT,
        lookup: Callable[[], Awaitable[ModelT | None]],
    ) -> tuple[ModelT, bool]:
        """
        Insert inside a savepoint; if a concurrent insert won, load its row.
        """
        try:
            async with self.session.begin_nested():
                self.session.add(instance)
        except IntegrityError:
            existing = await lookup()
            if existing is None:
                raise ConflictError(
                    f"Could not insert {type(instance).__name__} and found no existing row"
                ) from None
            logger.info(
                "Concurrent insert of %s detected, using existing row",
                type(instance).__name__,
            )
            return existing, False
        return instance, True

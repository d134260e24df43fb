"""Read-side repository queries."""

from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Build, BuildState, Commit, Permission, Repository, User

RECENT_LIMIT = 25
BRANCH_LIMIT = 25


class RepositoryQueries:
    """Named repository lookups, each one explicit query against the session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _all(self, stmt: Select) -> list[Any]:
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _first(self, stmt: Select) -> Any:
        result = await self.session.execute(stmt.limit(1))
        return result.scalars().first()

    # Collections

    async def timeline(self, limit: int | None = None) -> list[Repository]:
        """Repositories that have built, most recently started first."""
        stmt = (
            select(Repository)
            .where(Repository.last_build_started_at.is_not(None))
            .order_by(Repository.last_build_started_at.desc(), Repository.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._all(stmt)

    async def recent(self, limit: int = RECENT_LIMIT) -> list[Repository]:
        return await self.timeline(limit=limit)

    async def administratable(self, user_id: int | None = None) -> list[Repository]:
        """Repositories someone (or the given user) holds admin rights on."""
        stmt = (
            select(Repository)
            .join(Permission, Permission.repository_id == Repository.id)
            .where(Permission.admin.is_(True))
        )
        if user_id is not None:
            stmt = stmt.where(Permission.user_id == user_id)
        return await self._all(stmt.distinct().order_by(Repository.id))

    async def by_owner_name(self, owner_name: str) -> list[Repository]:
        return await self._all(
            select(Repository).where(Repository.owner_name == owner_name).order_by(Repository.id)
        )

    async def by_member(self, login: str) -> list[Repository]:
        """Repositories the user with this login has any permission on."""
        return await self._all(
            select(Repository)
            .join(Permission, Permission.repository_id == Repository.id)
            .join(User, Permission.user_id == User.id)
            .where(User.login == login)
            .order_by(Repository.id)
        )

    async def search(self, query: str) -> list[Repository]:
        """Case-insensitive substring match on the slug; backslashes read as slashes."""
        query = query.replace("\\", "/")
        slug = Repository.owner_name + "/" + Repository.name
        return await self._all(
            select(Repository).where(slug.ilike(f"%{query}%")).order_by(Repository.id)
        )

    async def active(self) -> list[Repository]:
        return await self._all(
            select(Repository).where(Repository.active.is_(True)).order_by(Repository.id)
        )

    async def by_name(self, owner_name: str | None = None) -> dict[str, Repository]:
        """Repositories keyed by name, optionally limited to one owner."""
        stmt = select(Repository).order_by(Repository.id)
        if owner_name is not None:
            stmt = stmt.where(Repository.owner_name == owner_name)
        return {repository.name: repository for repository in await self._all(stmt)}

    async def counts_by_owner_names(self, owner_names: Iterable[str]) -> dict[str, int]:
        names = list(owner_names)
        if not names:
            return {}
        result = await self.session.execute(
            select(Repository.owner_name, func.count())
            .where(Repository.owner_name.in_(names))
            .group_by(Repository.owner_name)
        )
        return {owner_name: count for owner_name, count in result.all()}

    # Single repositories

    async def by_slug(self, slug: str) -> Repository | None:
        owner_name, _, name = slug.partition("/")
        if not name:
            return None
        return await self._first(
            select(Repository).where(
                Repository.owner_name == owner_name,
                Repository.name == name,
            )
        )

    async def find_by(self, params: Mapping[str, Any]) -> Repository | None:
        """
        Look a repository up by whichever key the params carry.

        ``repository_id`` or ``id`` win over ``slug``, which wins over the
        ``owner_name`` and ``name`` pair. Anything else finds nothing.
        """
        repository_id = params.get("repository_id") or params.get("id")
        if repository_id:
            return await self.session.get(Repository, int(repository_id))
        if "slug" in params:
            return await self.by_slug(params["slug"])
        if "name" in params and "owner_name" in params:
            return await self._first(
                select(Repository).where(
                    Repository.owner_name == params["owner_name"],
                    Repository.name == params["name"],
                )
            )
        return None

    # Per repository

    async def admin_for(self, repository: Repository) -> User | None:
        """A user with admin rights on the repository, if any."""
        return await self._first(
            select(User)
            .join(Permission, Permission.user_id == User.id)
            .where(
                Permission.repository_id == repository.id,
                Permission.admin.is_(True),
            )
            .order_by(User.id)
        )

    async def last_build(self, repository: Repository) -> Build | None:
        return await self._first(
            select(Build).where(Build.repository_id == repository.id).order_by(Build.id.desc())
        )

    async def branches(self, repository: Repository) -> list[str]:
        """Branches that have builds, in reverse name order."""
        result = await self.session.execute(
            select(Commit.branch)
            .join(Build, Build.commit_id == Commit.id)
            .where(Build.repository_id == repository.id)
            .distinct()
            .order_by(Commit.branch.desc())
            .limit(BRANCH_LIMIT)
        )
        return list(result.scalars().all())

    async def build_status(self, repository: Repository, branch: str) -> Build | None:
        """Latest passed or failed push build on the branch."""
        return await self._first(
            select(Build)
            .join(Commit, Build.commit_id == Commit.id)
            .where(
                Build.repository_id == repository.id,
                Build.event_type == "push",
                Build.state.in_([BuildState.PASSED, BuildState.FAILED]),
                Commit.branch == branch,
            )
            .order_by(Build.id.desc())
        )

    async def last_finished_builds_by_branches(self, repository: Repository) -> list[Build]:
        """The most recently finished build of each branch, oldest first."""
        ranked = (
            select(
                Build.id.label("build_id"),
                func.row_number()
                .over(partition_by=Commit.branch, order_by=Build.finished_at.desc())
                .label("rank"),
            )
            .join(Commit, Build.commit_id == Commit.id)
            .where(
                Build.repository_id == repository.id,
                Build.finished_at.is_not(None),
            )
            .subquery()
        )
        latest = select(ranked.c.build_id).where(ranked.c.rank == 1)
        return await self._all(
            select(Build)
            .where(Build.id.in_(latest))
            .order_by(Build.finished_at)
            .limit(BRANCH_LIMIT)
        )

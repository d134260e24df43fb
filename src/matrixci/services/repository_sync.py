"""Mirror a user's GitHub repositories and permissions into the database."""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..errors import ValidationError
from ..models import OrganizationOwner, Owner, Repository, User, UserOwner
from ..schemas.github import RemoteOwner, RemoteRepository
from .store import StateStore, unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class SyncOutcome:
    """What syncing one remote repository changed."""

    repository: Repository
    repository_created: bool = False
    permission_created: bool = False
    permission_updated: bool = False


@dataclass
class SyncResult:
    """Totals for syncing all of a user's repositories."""

    repositories_created: int = 0
    permissions_created: int = 0
    permissions_updated: int = 0
    permissions_removed: int = 0
    repository_ids: list[int] = field(default_factory=list)


def _coerce(remote: RemoteRepository | Mapping[str, Any]) -> RemoteRepository:
    if isinstance(remote, RemoteRepository):
        return remote
    try:
        return RemoteRepository.model_validate(remote)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid remote repository: {e}") from e


class RepositorySynchronizer:
    """Creates repositories and permissions for a user, idempotently."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory

    async def sync(
        self,
        user: User,
        remote: RemoteRepository | Mapping[str, Any],
    ) -> SyncOutcome:
        """
        Ensure the repository exists and the user holds a matching permission.

        Running this again with the same input changes nothing. Permission
        flags that changed remotely are updated in place.
        """
        remote = _coerce(remote)
        async with unit_of_work(self.session_factory) as store:
            return await self._sync(store, user, remote)

    async def sync_all(
        self,
        user: User,
        remotes: Iterable[RemoteRepository | Mapping[str, Any]],
        prune: bool | None = None,
    ) -> SyncResult:
        """Sync every remote repository, then drop permissions the user lost."""
        prune = settings.sync_prune_permissions if prune is None else prune
        result = SyncResult()

        for remote in remotes:
            outcome = await self.sync(user, remote)
            result.repository_ids.append(outcome.repository.id)
            result.repositories_created += outcome.repository_created
            result.permissions_created += outcome.permission_created
            result.permissions_updated += outcome.permission_updated

        if prune:
            async with unit_of_work(self.session_factory) as store:
                result.permissions_removed = await store.delete_permissions_except(
                    user.id, result.repository_ids
                )

        logger.info(
            "Synced %d repositories for %s: %d new repositories, "
            "%d new, %d updated, %d removed permissions",
            len(result.repository_ids),
            user.login,
            result.repositories_created,
            result.permissions_created,
            result.permissions_updated,
            result.permissions_removed,
        )
        return result

    async def _sync(
        self,
        store: StateStore,
        user: User,
        remote: RemoteRepository,
    ) -> SyncOutcome:
        owner = await self._resolve_owner(store, user, remote.owner)
        repository, repository_created = await store.get_or_create_repository(
            remote.owner.login,
            remote.name,
            owner=owner,
            private=remote.private,
            github_id=remote.id,
            description=remote.description,
        )
        if repository_created:
            logger.info("Created repository %s", repository.slug)
        elif repository.owner is None and owner is not None:
            repository.owner = owner

        flags = remote.permissions.flags()
        permission, permission_created = await store.get_or_create_permission(
            user.id, repository.id, **flags
        )
        permission_updated = False
        if not permission_created and permission.flags() != flags:
            logger.info(
                "Updating %s permission on %s: %s -> %s",
                user.login,
                repository.slug,
                permission.flags(),
                flags,
            )
            permission.admin = flags["admin"]
            permission.push = flags["push"]
            permission.pull = flags["pull"]
            permission_updated = True

        return SyncOutcome(
            repository=repository,
            repository_created=repository_created,
            permission_created=permission_created,
            permission_updated=permission_updated,
        )

    async def _resolve_owner(
        self,
        store: StateStore,
        user: User,
        remote_owner: RemoteOwner,
    ) -> Owner | None:
        """Owner of the repository, limited to accounts already known locally."""
        if remote_owner.login == user.login:
            return UserOwner(user.id)
        if remote_owner.type == "Organization":
            organization = await store.find_organization(remote_owner.login)
            if organization is not None:
                return OrganizationOwner(organization.id)
        return None

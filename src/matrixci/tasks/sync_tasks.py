"""Repository synchronization task definitions for Procrastinate."""

import logging

from ..services.github_client import GitHubClient
from ..services.repository_sync import RepositorySynchronizer
from ..services.store import unit_of_work
from ..utils.time import utcnow
from .worker import RETRY_ON_STORE_ERRORS, SYNC_QUEUE, app

logger = logging.getLogger(__name__)


@app.task(name="sync_user", queue=SYNC_QUEUE, retry=RETRY_ON_STORE_ERRORS)
async def sync_user(user_id: int) -> None:
    """Mirror the user's GitHub repositories and permissions."""
    async with unit_of_work() as store:
        user = await store.get_user(user_id, lock=True)
        if user is None:
            logger.warning("User %s not found, nothing to sync", user_id)
            return
        if not user.github_oauth_token:
            logger.warning("User %s has no GitHub token, nothing to sync", user.login)
            return
        user.is_syncing = True

    synced = False
    try:
        async with GitHubClient(user.github_oauth_token) as gh:
            remotes = await gh.get_user_repositories()
        await RepositorySynchronizer().sync_all(user, remotes)
        synced = True
    finally:
        async with unit_of_work() as store:
            user = await store.get_user(user_id, lock=True)
            if user is not None:
                user.is_syncing = False
                if synced:
                    user.synced_at = utcnow()

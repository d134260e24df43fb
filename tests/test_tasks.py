"""Tests for the procrastinate tasks, publisher and notifier."""

from datetime import datetime, timezone

import httpx
import pytest
from procrastinate import testing
from sqlalchemy import delete

from matrixci.models import BuildState, Job, Permission, User
from matrixci.schemas.queue import JobMessage
from matrixci.services import store as store_module
from matrixci.services.github_client import GitHubClient
from matrixci.services.notifications import Notification
from matrixci.tasks import job_tasks, sync_tasks
from matrixci.tasks.dispatch import ProcrastinateNotifier, ProcrastinatePublisher
from matrixci.tasks.worker import app


@pytest.fixture
def connector():
    in_memory = testing.InMemoryConnector()
    with app.replace_connector(in_memory):
        yield in_memory


@pytest.fixture
def default_store(monkeypatch, session_factory):
    """Point services created without a session factory at the test database."""
    monkeypatch.setattr(store_module, "async_session_factory", session_factory)


def deferred(connector, task_name):
    return [job for job in connector.jobs.values() if job["task_name"] == task_name]


def message(job_id: int = 1) -> JobMessage:
    return JobMessage(
        job_id=job_id,
        build_id=1,
        number="1.1",
        queue="builds.linux",
        repository_id=1,
        repository_slug="svenfuchs/minimal",
        source_url="git://github.com/svenfuchs/minimal.git",
        config={"rvm": "1.9.3"},
        queued_at=datetime(2011, 1, 1, tzinfo=timezone.utc),
    )


async def test_publisher_defers_worker_task(connector):
    """Test a job message is deferred on the job's queue with a per-job lock."""
    await ProcrastinatePublisher(app).publish(message())

    (job,) = deferred(connector, "run_job")
    assert job["queue_name"] == "builds.linux"
    assert job["queueing_lock"] == "job:1"
    assert job["args"]["job_id"] == 1
    assert job["args"]["repository_slug"] == "svenfuchs/minimal"
    assert job["args"]["queued_at"] == "2011-01-01T00:00:00Z"


async def test_publisher_ignores_already_enqueued(connector):
    """Test publishing a job still waiting in the queue is a no-op."""
    publisher = ProcrastinatePublisher(app)
    await publisher.publish(message())
    await publisher.publish(message())
    await publisher.publish(message(job_id=2))

    assert len(deferred(connector, "run_job")) == 2


async def test_notifier_defers_one_task_per_notification(connector):
    """Test each notification becomes a notify task."""
    await ProcrastinateNotifier(app).notify(
        [
            Notification("job:test:finished", {"id": 1}),
            Notification("build:finished", {"id": 1}),
        ]
    )

    jobs = deferred(connector, "notify")
    assert [job["args"]["event"] for job in jobs] == ["job:test:finished", "build:finished"]
    assert all(job["queue_name"] == "notifications" for job in jobs)


async def test_update_job_drops_invalid_events(connector):
    """Test rejected events are logged and not retried."""
    await job_tasks.update_job("finish", {"id": 1})
    assert connector.jobs == {}


async def test_update_job_requests_enqueue(connector, default_store, make_build, repository, fetch):
    """Test a finished job triggers one pending enqueue round."""
    build = await make_build(
        repository,
        matrix=[{"stage": 1}, {"stage": 2}],
        jobs=[{"state": BuildState.STARTED, "started_at": datetime(2011, 1, 1, tzinfo=timezone.utc)}],
        state=BuildState.STARTED,
    )
    first = build.matrix[0]
    payload = {"id": first.id, "state": "passed", "finished_at": "2011-01-01T00:03:00Z"}

    await job_tasks.update_job("finish", payload)
    await job_tasks.update_job("finish", payload)

    assert (await fetch(Job, first.id)).state == BuildState.PASSED
    (enqueue,) = deferred(connector, "enqueue_jobs")
    assert enqueue["queueing_lock"] == "enqueue_jobs"
    assert {job["args"]["event"] for job in deferred(connector, "notify")} == {
        "job:test:finished"
    }


async def test_enqueue_jobs_task(connector, default_store, make_build, repository):
    """Test the enqueue task publishes waiting jobs through procrastinate."""
    await make_build(repository, matrix=[{}, {}])

    await job_tasks.enqueue_jobs(timestamp=1293840000)

    assert {job["queueing_lock"] for job in deferred(connector, "run_job")} == {
        f"job:{job_id}" for job_id in (1, 2)
    }


async def test_sync_user(default_store, seed, session_factory, fetch, monkeypatch):
    """Test the sync task mirrors the user's repositories and stamps the sync."""
    user = User(login="svenfuchs", github_oauth_token="secret")
    await seed(user)

    repos = [
        {
            "name": "minimal",
            "owner": {"login": "svenfuchs", "type": "User"},
            "permissions": {"admin": True, "push": True, "pull": True},
        }
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=repos if request.url.params["page"] == "1" else [])

    monkeypatch.setattr(
        sync_tasks,
        "GitHubClient",
        lambda token: GitHubClient(token, transport=httpx.MockTransport(handler)),
    )

    await sync_tasks.sync_user(user.id)

    synced = await fetch(User, user.id)
    assert synced.is_syncing is False
    assert synced.synced_at is not None
    async with session_factory() as session:
        permission = await session.get(Permission, 1)
    assert permission.user_id == user.id
    assert permission.admin is True


async def test_sync_user_failure_clears_flag(default_store, seed, fetch, monkeypatch):
    """Test a failed sync is not stamped but no longer marked running."""
    user = User(login="svenfuchs", github_oauth_token="expired")
    await seed(user)
    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={}))
    monkeypatch.setattr(
        sync_tasks,
        "GitHubClient",
        lambda token: GitHubClient(token, transport=transport),
    )

    with pytest.raises(httpx.HTTPStatusError):
        await sync_tasks.sync_user(user.id)

    synced = await fetch(User, user.id)
    assert synced.is_syncing is False
    assert synced.synced_at is None


async def test_sync_user_removed_during_sync(
    default_store, seed, session_factory, fetch, monkeypatch
):
    """Test a user deleted mid-sync surfaces the sync error, not the cleanup."""
    user = User(login="svenfuchs", github_oauth_token="secret")
    await seed(user)
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=[]))
    monkeypatch.setattr(
        sync_tasks,
        "GitHubClient",
        lambda token: GitHubClient(token, transport=transport),
    )

    class RemovingSynchronizer:
        async def sync_all(self, user, remotes):
            async with session_factory() as session:
                await session.execute(delete(User).where(User.id == user.id))
                await session.commit()
            raise LookupError("user vanished")

    monkeypatch.setattr(sync_tasks, "RepositorySynchronizer", RemovingSynchronizer)

    with pytest.raises(LookupError):
        await sync_tasks.sync_user(user.id)

    assert await fetch(User, user.id) is None

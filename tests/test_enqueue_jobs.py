"""Tests for selecting and dispatching jobs."""

from datetime import datetime, timezone

import pytest

from matrixci.models import BuildState, Job, new_repository
from matrixci.services.enqueue_jobs import JobEnqueuer, OwnerLimits
from matrixci.services.store import unit_of_work

S = BuildState


class RecordingPublisher:
    def __init__(self):
        self.messages = []

    async def publish(self, message):
        self.messages.append(message)


class FailingPublisher:
    async def publish(self, message):
        raise ConnectionError("queue unavailable")


class FlakyPublisher(RecordingPublisher):
    """Fails once, on the n-th message it is handed."""

    def __init__(self, fail_on: int):
        super().__init__()
        self.fail_on = fail_on
        self.calls = 0

    async def publish(self, message):
        self.calls += 1
        if self.calls == self.fail_on:
            raise ConnectionError("queue unavailable")
        await super().publish(message)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def enqueuer(session_factory, publisher):
    return JobEnqueuer(publisher, session_factory=session_factory, limits=OwnerLimits(5))


async def test_enqueues_waiting_job(enqueuer, publisher, make_build, repository, fetch):
    """Test a created job is marked queued and published."""
    build = await make_build(repository)
    job_id = build.matrix[0].id

    messages = await enqueuer.run()

    assert [m.job_id for m in messages] == [job_id]
    assert publisher.messages == messages
    job = await fetch(Job, job_id)
    assert job.state == S.QUEUED
    assert job.queued_at is not None


async def test_message_content(enqueuer, make_build, repository):
    """Test the message carries what a worker needs to run the job."""
    build = await make_build(repository, matrix=[{"rvm": "1.9.3", "queue": "builds.mac"}])

    (message,) = await enqueuer.run()

    assert message.type == "test"
    assert message.build_id == build.id
    assert message.number == "1.1"
    assert message.queue == "builds.mac"
    assert message.repository_slug == "svenfuchs/minimal"
    assert message.source_url == "git://github.com/svenfuchs/minimal.git"
    assert message.commit.sha == "62aae5f70ceee39123ef"
    assert message.commit.branch == "master"
    assert message.config == {"rvm": "1.9.3"}


async def test_default_queue(enqueuer, make_build, repository):
    """Test jobs without a queue go to the default queue."""
    await make_build(repository)
    (message,) = await enqueuer.run()
    assert message.queue == "builds.linux"


async def test_rerun_dispatches_nothing(enqueuer, publisher, make_build, repository):
    """Test a job is dispatched exactly once."""
    await make_build(repository)
    await enqueuer.run()
    assert await enqueuer.run() == []
    assert len(publisher.messages) == 1


async def test_skips_inactive_repositories(enqueuer, make_build, seed):
    """Test jobs of inactive repositories stay waiting."""
    inactive = new_repository("svenfuchs", "inactive", active=False)
    await seed(inactive)
    await make_build(inactive)

    assert await enqueuer.run() == []


async def test_skips_finished_builds(enqueuer, make_build, repository):
    """Test waiting jobs of an already finished build are not dispatched."""
    await make_build(repository, state=S.CANCELED)
    assert await enqueuer.run() == []


async def test_owner_limit(session_factory, publisher, make_build, repository):
    """Test no more jobs are dispatched than the owner may run."""
    await make_build(repository, matrix=[{}, {}, {}])
    enqueuer = JobEnqueuer(publisher, session_factory=session_factory, limits=OwnerLimits(2))

    messages = await enqueuer.run()

    assert [m.number for m in messages] == ["1.1", "1.2"]
    assert await enqueuer.run() == []


async def test_running_jobs_count_against_limit(
    session_factory, publisher, make_build, repository
):
    """Test started jobs use up the owner's capacity."""
    started = {"state": S.STARTED, "started_at": datetime(2011, 1, 1, tzinfo=timezone.utc)}
    await make_build(repository, matrix=[{}, {}], jobs=[started, {}], state=S.STARTED)
    enqueuer = JobEnqueuer(publisher, session_factory=session_factory, limits=OwnerLimits(1))

    assert await enqueuer.run() == []


async def test_owner_limit_override(session_factory, publisher, make_build, repository):
    """Test a per-owner limit replaces the default."""
    await make_build(repository, matrix=[{}, {}, {}])
    limits = OwnerLimits(1, {"svenfuchs": 3})
    enqueuer = JobEnqueuer(publisher, session_factory=session_factory, limits=limits)

    assert len(await enqueuer.run()) == 3


async def test_repository_limit(enqueuer, make_build, repository, seed):
    """Test a repository's own limit is respected."""
    repository.max_concurrent_jobs = 1
    await seed(repository)
    await make_build(repository, matrix=[{}, {}])

    assert len(await enqueuer.run()) == 1


async def test_later_stage_waits(enqueuer, make_build, repository):
    """Test jobs of a later stage wait for the earlier stage to finish."""
    await make_build(repository, matrix=[{"stage": 1}, {"stage": 2}])

    messages = await enqueuer.run()
    assert [m.number for m in messages] == ["1.1"]
    assert await enqueuer.run() == []


async def test_later_stage_runs_after_earlier_passed(enqueuer, make_build, repository):
    """Test a later stage is dispatched once the earlier stage passed."""
    passed = {"state": S.PASSED}
    await make_build(
        repository,
        matrix=[{"stage": 1}, {"stage": 2}],
        jobs=[passed],
        state=S.STARTED,
    )

    messages = await enqueuer.run()
    assert [m.number for m in messages] == ["1.2"]


async def test_failed_publish_releases_job(session_factory, make_build, repository, fetch):
    """Test jobs stay waiting when publishing fails."""
    build = await make_build(repository)
    enqueuer = JobEnqueuer(
        FailingPublisher(), session_factory=session_factory, limits=OwnerLimits(5)
    )

    with pytest.raises(ConnectionError):
        await enqueuer.run()

    job = await fetch(Job, build.matrix[0].id)
    assert job.state == S.CREATED
    assert job.queued_at is None


async def test_partial_publish_failure_dispatches_each_job_once(
    session_factory, make_build, repository, fetch
):
    """Test a publish failure midway releases only the jobs not yet published."""
    build = await make_build(repository, matrix=[{}, {}])
    first, second = (job.id for job in build.matrix)
    publisher = FlakyPublisher(fail_on=2)
    enqueuer = JobEnqueuer(publisher, session_factory=session_factory, limits=OwnerLimits(5))

    with pytest.raises(ConnectionError):
        await enqueuer.run()

    assert (await fetch(Job, first)).state == S.QUEUED
    released = await fetch(Job, second)
    assert released.state == S.CREATED
    assert released.queued_at is None

    messages = await enqueuer.run()

    assert [m.job_id for m in messages] == [second]
    assert [m.job_id for m in publisher.messages] == [first, second]
    assert (await fetch(Job, second)).state == S.QUEUED


async def test_release_keeps_jobs_that_moved_on(session_factory, make_build, repository, fetch):
    """Test releasing a job that already started leaves it alone."""
    started = {"state": S.STARTED, "started_at": datetime(2011, 1, 1, tzinfo=timezone.utc)}
    queued = {"state": S.QUEUED, "queued_at": datetime(2011, 1, 1, tzinfo=timezone.utc)}
    build = await make_build(repository, matrix=[{}, {}], jobs=[started, queued], state=S.STARTED)
    first, second = (job.id for job in build.matrix)

    async with unit_of_work(session_factory) as store:
        released = await store.release_jobs([first, second])

    assert released == 1
    assert (await fetch(Job, first)).state == S.STARTED
    assert (await fetch(Job, second)).state == S.CREATED

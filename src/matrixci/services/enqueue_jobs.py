"""Select runnable jobs and dispatch them to the work queue."""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..models import BuildState, Job
from ..schemas.queue import CommitInfo, JobMessage
from ..utils.time import utcnow
from .state_machine import dependencies_satisfied
from .store import unit_of_work

logger = logging.getLogger(__name__)


class JobPublisher(Protocol):
    async def publish(self, message: JobMessage) -> None: ...


@dataclass(frozen=True)
class OwnerLimits:
    """How many jobs an owner may have dispatched or running at once."""

    default: int
    overrides: Mapping[str, int] = field(default_factory=dict)

    def for_owner(self, owner_name: str) -> int:
        return self.overrides.get(owner_name, self.default)

    @classmethod
    def from_settings(cls) -> "OwnerLimits":
        return cls(settings.max_jobs_per_owner, dict(settings.owner_job_limits))


def build_message(job: Job, queued_at: datetime) -> JobMessage:
    """Worker message for a job; its repository and commit must be loaded."""
    repository, commit = job.repository, job.commit
    return JobMessage(
        job_id=job.id,
        build_id=job.build_id,
        number=job.number,
        queue=job.queue or settings.default_queue,
        repository_id=repository.id,
        repository_slug=repository.slug,
        source_url=repository.source_url,
        commit=CommitInfo(
            sha=commit.commit,
            branch=commit.branch,
            message=commit.message,
            compare_url=commit.compare_url,
        )
        if commit
        else None,
        config=job.config or {},
        queued_at=queued_at,
    )


class JobEnqueuer:
    """
    Dispatches queueable jobs, oldest first, within concurrency limits.

    A job is dispatched at most once: it is marked ``queued`` with a
    ``queued_at`` timestamp and committed before it is published, and jobs
    with a ``queued_at`` are never selected again.
    """

    def __init__(
        self,
        publisher: JobPublisher,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        limits: OwnerLimits | None = None,
    ):
        self.publisher = publisher
        self.session_factory = session_factory
        self.limits = limits or OwnerLimits.from_settings()

    async def run(self) -> list[JobMessage]:
        """
        Run one enqueue round; returns the messages published.

        Jobs are marked queued and committed before anything is published,
        so a job that reached the queue is never selected again. When a
        publish fails, the jobs not yet published are released for the
        next round and the error is re-raised.
        """
        async with unit_of_work(self.session_factory) as store:
            candidates = await store.queueable_jobs()
            if not candidates:
                return []

            siblings = await store.jobs_for_builds({job.build_id for job in candidates})
            runnable = [
                job for job in candidates if dependencies_satisfied(job, siblings[job.build_id])
            ]
            running_by_owner, running_by_repository = await store.running_job_counts()
            selected = self.apply_limits(runnable, running_by_owner, running_by_repository)

            queued_at = utcnow()
            pending: list[JobMessage] = []
            for job in selected:
                job.state = BuildState.QUEUED
                job.queued_at = queued_at
                pending.append(build_message(job, queued_at))

        messages: list[JobMessage] = []
        for position, message in enumerate(pending):
            try:
                await self.publisher.publish(message)
            except Exception:
                unpublished = [m.job_id for m in pending[position:]]
                logger.exception(
                    "Publishing job %s failed, releasing %d jobs", message.job_id, len(unpublished)
                )
                async with unit_of_work(self.session_factory) as store:
                    await store.release_jobs(unpublished)
                raise
            messages.append(message)

        if messages:
            logger.info(
                "Enqueued %d of %d waiting jobs: %s",
                len(messages),
                len(candidates),
                ", ".join(f"{m.repository_slug}#{m.number}" for m in messages),
            )
        return messages

    def apply_limits(
        self,
        jobs: Sequence[Job],
        running_by_owner: Mapping[str, int],
        running_by_repository: Mapping[int, int],
    ) -> list[Job]:
        """Pick jobs in order until their owner or repository is at capacity."""
        by_owner = dict(running_by_owner)
        by_repository = dict(running_by_repository)
        selected: list[Job] = []
        for job in jobs:
            repository = job.repository
            owner_name = repository.owner_name
            if by_owner.get(owner_name, 0) >= self.limits.for_owner(owner_name):
                continue
            if (
                repository.max_concurrent_jobs is not None
                and by_repository.get(repository.id, 0) >= repository.max_concurrent_jobs
            ):
                continue
            selected.append(job)
            by_owner[owner_name] = by_owner.get(owner_name, 0) + 1
            by_repository[repository.id] = by_repository.get(repository.id, 0) + 1
        return selected

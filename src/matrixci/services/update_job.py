"""Apply worker job events and cascade them to the build and repository."""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import (
    InvalidTransitionError,
    JobNotFoundError,
    StaleEventError,
    ValidationError,
)
from ..models import Build, BuildState, Job, Repository
from ..schemas.worker_events import JobEventKind, JobEventPayload
from ..utils.time import as_utc, utcnow
from .notifications import (
    LoggingNotifier,
    Notification,
    Notifier,
    build_payload,
    job_payload,
)
from .state_machine import aggregate_state, build_duration, jobs_to_cancel
from .store import StateStore, unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class UpdateResult:
    """Outcome of one job event."""

    job_id: int
    event: JobEventKind
    applied: bool
    job_state: BuildState | None = None
    build_state: BuildState | None = None
    reason: str | None = None  # why a stale event was dropped


@dataclass
class EventContext:
    """Rows locked for one event, plus the notifications it produced."""

    event: JobEventPayload
    job: Job
    build: Build
    siblings: list[Job]
    repository: Repository
    notifications: list[Notification] = field(default_factory=list)

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        self.notifications.append(Notification(event, payload))


def _event_kind(event: str | JobEventKind) -> JobEventKind:
    try:
        return JobEventKind(event)
    except ValueError:
        raise ValidationError(f"Unknown job event {event!r}") from None


def _before(timestamp: datetime | None, recorded: datetime | None) -> bool:
    """True when both are known and the event time precedes the recorded one."""
    if timestamp is None or recorded is None:
        return False
    return as_utc(timestamp) < as_utc(recorded)


class JobUpdater:
    """
    Applies job lifecycle events reported by workers.

    Every event runs in one transaction: the build row is locked first so
    sibling jobs finishing at the same time recompute the build state one
    after the other, then the job and the repository rows are locked.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        notifier: Notifier | None = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or LoggingNotifier()

    @staticmethod
    def normalize(event: str | JobEventKind, payload: Mapping[str, Any]) -> JobEventPayload:
        """
        Validate a raw worker payload for the given event.

        Legacy ``result`` codes are already swapped for ``state`` on the
        returned payload.
        """
        kind = _event_kind(event)
        try:
            data = JobEventPayload.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {kind.value} payload: {e}") from e

        match kind:
            case JobEventKind.START if data.started_at is None:
                raise ValidationError(f"start event for job {data.id} has no started_at")
            case JobEventKind.FINISH if data.state is None or not data.state.is_finished:
                raise ValidationError(
                    f"finish event for job {data.id} needs a finished state, got {data.state}"
                )
            case JobEventKind.FINISH if data.finished_at is None:
                raise ValidationError(f"finish event for job {data.id} has no finished_at")
        return data

    async def apply_event(
        self,
        event: str | JobEventKind,
        payload: Mapping[str, Any],
    ) -> UpdateResult:
        """Apply one event; stale events are dropped and reported as not applied."""
        kind = _event_kind(event)
        data = self.normalize(kind, payload)
        handler = EVENT_HANDLERS[kind]

        try:
            async with unit_of_work(self.session_factory) as store:
                ctx = await self._load(store, data)
                handler(self, ctx)
        except StaleEventError as e:
            logger.info("Dropping %s event for job %s: %s", kind.value, data.id, e)
            return UpdateResult(job_id=data.id, event=kind, applied=False, reason=str(e))

        await self.notifier.notify(ctx.notifications)
        logger.info(
            "Applied %s to job %s: job=%s build=%s",
            kind.value,
            data.id,
            ctx.job.state.value,
            ctx.build.state.value,
        )
        return UpdateResult(
            job_id=data.id,
            event=kind,
            applied=True,
            job_state=ctx.job.state,
            build_state=ctx.build.state,
        )

    async def _load(self, store: StateStore, data: JobEventPayload) -> EventContext:
        job = await store.get_job(data.id)
        if job is None:
            raise JobNotFoundError(data.id)

        build = await store.get_build(job.build_id, lock=True)
        job = await store.get_job(data.id, lock=True)
        siblings = await store.jobs_for_build(build.id)
        repository = await store.get_repository(build.repository_id, lock=True)
        return EventContext(
            event=data,
            job=job,
            build=build,
            siblings=siblings,
            repository=repository,
        )

    # Handlers

    def start(self, ctx: EventContext) -> None:
        job, build = ctx.job, ctx.build
        started_at = ctx.event.started_at
        # A job may already be marked started without a start time
        if job.state.is_finished or (
            job.state == BuildState.STARTED and job.started_at is not None
        ):
            raise StaleEventError(f"job {job.id} is already {job.state.value}")
        if _before(started_at, job.queued_at):
            raise StaleEventError(
                f"start of job {job.id} at {started_at} is older than its queueing"
            )

        job.state = BuildState.STARTED
        job.started_at = started_at
        job.worker = ctx.event.worker
        ctx.notify("job:test:started", job_payload(job))

        if build.started_at is None:
            build.started_at = started_at
        if build.state == BuildState.CREATED:
            build.state = BuildState.STARTED
            ctx.notify("build:started", build_payload(build))
        self._propagate_start(ctx)

    def finish(self, ctx: EventContext) -> None:
        job, state = ctx.job, ctx.event.state
        if job.state.is_finished:
            raise StaleEventError(f"job {job.id} already finished as {job.state.value}")
        if job.state != BuildState.STARTED and state not in (
            BuildState.ERRORED,
            BuildState.CANCELED,
        ):
            raise InvalidTransitionError(
                f"job {job.id} is {job.state.value}, it cannot finish as {state.value}"
            )
        self._finish_job(ctx, state, ctx.event.finished_at)

    def cancel(self, ctx: EventContext) -> None:
        if ctx.job.state.is_finished:
            raise StaleEventError(f"job {ctx.job.id} already finished as {ctx.job.state.value}")
        self._finish_job(ctx, BuildState.CANCELED, ctx.event.finished_at or utcnow())

    def reset(self, ctx: EventContext) -> None:
        job, build, repository = ctx.job, ctx.build, ctx.repository
        if job.state == BuildState.CREATED:
            raise StaleEventError(f"job {job.id} has not been queued yet")

        job.state = BuildState.CREATED
        job.queued_at = None
        job.started_at = None
        job.finished_at = None
        job.worker = None
        ctx.notify("job:test:reset", job_payload(job))

        previous = build.state
        build.state = aggregate_state(ctx.siblings)
        build.finished_at = None
        build.duration = None
        if build.state == BuildState.CREATED:
            build.started_at = None
        if build.state != previous:
            ctx.notify("build:reset", build_payload(build))

        if repository.last_build_id == build.id:
            repository.last_build_state = build.state
            repository.last_build_finished_at = None
            repository.last_build_duration = None

    # Cascade

    def _finish_job(self, ctx: EventContext, state: BuildState, finished_at: datetime) -> None:
        job = ctx.job
        if _before(finished_at, job.started_at):
            raise StaleEventError(
                f"finish of job {job.id} at {finished_at} is older than its start"
            )
        job.state = state
        job.finished_at = finished_at
        ctx.notify("job:test:finished", job_payload(job))

        for later in jobs_to_cancel(job, ctx.siblings):
            later.state = BuildState.CANCELED
            later.finished_at = finished_at
            ctx.notify("job:test:finished", job_payload(later))

        self._update_build(ctx, finished_at)

    def _update_build(self, ctx: EventContext, timestamp: datetime) -> None:
        build = ctx.build
        state = aggregate_state(ctx.siblings)
        if state == build.state:
            return

        previous, build.state = build.state, state
        if state == BuildState.STARTED and previous == BuildState.CREATED:
            build.started_at = build.started_at or timestamp
            ctx.notify("build:started", build_payload(build))
            self._propagate_start(ctx)
        elif state.is_finished:
            build.finished_at = timestamp
            build.duration = build_duration(ctx.siblings)
            ctx.notify("build:finished", build_payload(build))
            self._propagate_finish(ctx)

    def _propagate_start(self, ctx: EventContext) -> None:
        repository, build = ctx.repository, ctx.build
        current = as_utc(repository.last_build_started_at)
        if (
            repository.last_build_id != build.id
            and current is not None
            and current > as_utc(build.started_at)
        ):
            logger.info(
                "Keeping build %s as last build of %s, build %s started earlier",
                repository.last_build_id,
                repository.slug,
                build.id,
            )
            return

        repository.last_build_id = build.id
        repository.last_build_number = build.number
        repository.last_build_state = BuildState.STARTED
        repository.last_build_started_at = build.started_at
        repository.last_build_finished_at = None
        repository.last_build_duration = None

    def _propagate_finish(self, ctx: EventContext) -> None:
        repository, build = ctx.repository, ctx.build
        if repository.last_build_id not in (None, build.id):
            current = as_utc(repository.last_build_started_at)
            started_at = as_utc(build.started_at)
            if current is not None and (started_at is None or started_at < current):
                logger.info(
                    "Not recording build %s as last build of %s, build %s is newer",
                    build.id,
                    repository.slug,
                    repository.last_build_id,
                )
                return

        repository.last_build_id = build.id
        repository.last_build_number = build.number
        repository.last_build_state = build.state
        if build.started_at is not None:
            repository.last_build_started_at = build.started_at
        repository.last_build_finished_at = build.finished_at
        repository.last_build_duration = build.duration


EVENT_HANDLERS: dict[JobEventKind, Callable[[JobUpdater, EventContext], None]] = {
    JobEventKind.START: JobUpdater.start,
    JobEventKind.FINISH: JobUpdater.finish,
    JobEventKind.CANCEL: JobUpdater.cancel,
    JobEventKind.RESET: JobUpdater.reset,
}

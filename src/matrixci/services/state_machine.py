"""Build state aggregation and job dependency rules."""

from collections.abc import Sequence

from ..models import BuildState, Job
from ..utils.time import as_utc


def aggregate_state(jobs: Sequence[Job]) -> BuildState:
    """
    Derive a build's state from its jobs.

    While any job is unfinished the build is ``started`` once some job has
    started or finished, otherwise ``created``. When every job has finished,
    only required jobs (not allowed to fail) count: errored beats failed,
    failed beats canceled, and the build passes when none of those occurred.
    """
    if not jobs:
        return BuildState.CREATED

    if not all(job.state.is_finished for job in jobs):
        if any(job.state == BuildState.STARTED or job.state.is_finished for job in jobs):
            return BuildState.STARTED
        return BuildState.CREATED

    states = {job.state for job in jobs if not job.allow_failure}
    for state in (BuildState.ERRORED, BuildState.FAILED, BuildState.CANCELED):
        if state in states:
            return state
    return BuildState.PASSED


def blocks_later_stages(job: Job) -> bool:
    """A required job that finished without passing stops later stages."""
    return job.state.is_finished and job.state != BuildState.PASSED and not job.allow_failure


def dependencies_satisfied(job: Job, siblings: Sequence[Job]) -> bool:
    """True when every earlier stage of the build finished and none blocks."""
    earlier = [other for other in siblings if other.stage_number < job.stage_number]
    return all(other.state.is_finished for other in earlier) and not any(
        blocks_later_stages(other) for other in earlier
    )


def jobs_to_cancel(finished: Job, siblings: Sequence[Job]) -> list[Job]:
    """Later-stage jobs that can no longer run after ``finished`` ended."""
    if not blocks_later_stages(finished):
        return []
    return [
        other
        for other in siblings
        if other.stage_number > finished.stage_number
        and other.state in (BuildState.CREATED, BuildState.QUEUED)
    ]


def job_duration(job: Job) -> int | None:
    if job.started_at is None or job.finished_at is None:
        return None
    return int((as_utc(job.finished_at) - as_utc(job.started_at)).total_seconds())


def build_duration(jobs: Sequence[Job]) -> int | None:
    """Summed run time of the build's jobs, in seconds."""
    durations = [d for d in (job_duration(job) for job in jobs) if d is not None]
    return sum(durations) if durations else None

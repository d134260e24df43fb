"""State enum shared by jobs, builds and the repository's last-build summary."""

from enum import Enum

from sqlalchemy import Enum as SQLEnum


class BuildState(str, Enum):
    """Lifecycle state of a job, a build, or a repository's last build."""

    CREATED = "created"
    QUEUED = "queued"  # dispatched to a worker, not yet started
    STARTED = "started"
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"
    CANCELED = "canceled"

    @property
    def is_finished(self) -> bool:
        return self in FINISHED_STATES


FINISHED_STATES = frozenset(
    {BuildState.PASSED, BuildState.FAILED, BuildState.ERRORED, BuildState.CANCELED}
)


def build_state_type() -> SQLEnum:
    """Column type for BuildState, stored by value."""
    return SQLEnum(
        BuildState,
        name="build_state",
        values_callable=lambda states: [state.value for state in states],
    )

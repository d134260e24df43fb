"""Build model."""

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType
from .job import Job
from .state import BuildState, build_state_type

if TYPE_CHECKING:
    from .commit import Commit, Request
    from .repository import Repository


class Build(Base):
    """A single CI run for a commit, grouping one or more jobs (the matrix)."""

    __tablename__ = "builds"

    id: Mapped[int] = mapped_column(primary_key=True)
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"),
        index=True,
    )
    commit_id: Mapped[int | None] = mapped_column(
        ForeignKey("commits.id", ondelete="SET NULL"),
        nullable=True,
    )
    request_id: Mapped[int | None] = mapped_column(
        ForeignKey("requests.id", ondelete="SET NULL"),
        nullable=True,
    )

    number: Mapped[str] = mapped_column(String(20))
    event_type: Mapped[str] = mapped_column(String(20), default="push")  # push, pull_request
    state: Mapped[BuildState] = mapped_column(
        build_state_type(),
        default=BuildState.CREATED,
        index=True,
    )
    config: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Timing
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # seconds

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    # Relationships
    repository: Mapped["Repository"] = relationship(back_populates="builds")
    commit: Mapped["Commit | None"] = relationship()
    request: Mapped["Request | None"] = relationship(back_populates="builds")
    matrix: Mapped[list["Job"]] = relationship(
        back_populates="build",
        cascade="all, delete-orphan",
        order_by="Job.position",
    )


def new_build(
    repository: "Repository",
    *,
    number: str,
    commit: "Commit | None" = None,
    request: "Request | None" = None,
    event_type: str = "push",
    config: dict[str, Any] | None = None,
    matrix: list[dict[str, Any]] | None = None,
    queue: str | None = None,
) -> Build:
    """
    Create a build with its jobs.

    Each matrix entry is a job config; the keys ``stage``, ``allow_failure``
    and ``queue`` are lifted onto the job, the rest is kept as job config.
    Without a matrix the build gets a single job running the build config.
    """
    build = Build(
        repository=repository,
        number=number,
        commit=commit,
        request=request,
        event_type=event_type,
        state=BuildState.CREATED,
        config=config or {},
    )
    for position, job_config in enumerate(matrix or [config or {}], start=1):
        job_config = dict(job_config)
        stage_number = job_config.pop("stage", 1)
        allow_failure = job_config.pop("allow_failure", False)
        job_queue = job_config.pop("queue", None) or queue
        build.matrix.append(
            Job(
                repository=repository,
                commit=commit,
                number=f"{number}.{position}",
                position=position,
                stage_number=stage_number,
                allow_failure=allow_failure,
                state=BuildState.CREATED,
                queue=job_queue,
                config=job_config,
            )
        )
    return build

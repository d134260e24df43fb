"""Job model."""

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType
from .state import BuildState, build_state_type

if TYPE_CHECKING:
    from .build import Build
    from .commit import Commit
    from .repository import Repository


class Job(Base):
    """One executable unit of a build's matrix."""

    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(primary_key=True)
    build_id: Mapped[int] = mapped_column(
        ForeignKey("builds.id", ondelete="CASCADE"),
        index=True,
    )
    # Denormalized so the enqueuer can filter on owner without joining builds
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"),
        index=True,
    )
    commit_id: Mapped[int | None] = mapped_column(
        ForeignKey("commits.id", ondelete="SET NULL"),
        nullable=True,
    )

    number: Mapped[str] = mapped_column(String(30))  # "<build number>.<position>"
    position: Mapped[int] = mapped_column(Integer, default=1)
    stage_number: Mapped[int] = mapped_column(Integer, default=1)
    allow_failure: Mapped[bool] = mapped_column(Boolean, default=False)

    state: Mapped[BuildState] = mapped_column(
        build_state_type(),
        default=BuildState.CREATED,
        index=True,
    )
    queue: Mapped[str | None] = mapped_column(String(100), nullable=True)
    config: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    worker: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Timing
    queued_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    # Relationships
    build: Mapped["Build"] = relationship(back_populates="matrix")
    repository: Mapped["Repository"] = relationship()
    commit: Mapped["Commit | None"] = relationship()

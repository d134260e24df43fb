"""Commit and build request models."""

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType

if TYPE_CHECKING:
    from .build import Build
    from .repository import Repository


class Commit(Base):
    """A commit that builds were requested for."""

    __tablename__ = "commits"

    id: Mapped[int] = mapped_column(primary_key=True)
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"),
        index=True,
    )

    commit: Mapped[str] = mapped_column(String(40), index=True)  # sha
    branch: Mapped[str] = mapped_column(String(255), index=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    compare_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    author_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    author_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    committed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    repository: Mapped["Repository"] = relationship(back_populates="commits")


class Request(Base):
    """An accepted or rejected request to build a commit (push or pull request)."""

    __tablename__ = "requests"

    id: Mapped[int] = mapped_column(primary_key=True)
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"),
        index=True,
    )
    commit_id: Mapped[int | None] = mapped_column(
        ForeignKey("commits.id", ondelete="SET NULL"),
        nullable=True,
    )

    event_type: Mapped[str] = mapped_column(String(20), default="push")
    state: Mapped[str] = mapped_column(String(20), default="created")
    result: Mapped[str | None] = mapped_column(String(20), nullable=True)  # accepted, rejected
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    repository: Mapped["Repository"] = relationship(back_populates="requests")
    commit: Mapped["Commit | None"] = relationship()
    builds: Mapped[list["Build"]] = relationship(back_populates="request")

"""Permission model linking users to repositories."""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .repository import Repository
    from .user import User


class Permission(Base):
    """What a user may do on a repository, as reported by GitHub."""

    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "repository_id", name="uq_permission_user_repository"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"),
        index=True,
    )

    admin: Mapped[bool] = mapped_column(Boolean, default=False)
    push: Mapped[bool] = mapped_column(Boolean, default=False)
    pull: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="permissions")
    repository: Mapped["Repository"] = relationship(back_populates="permissions")

    def flags(self) -> dict[str, bool]:
        """Capability flags as a dict, comparable with remote permissions."""
        return {"admin": self.admin, "push": self.push, "pull": self.pull}

"""Repository model."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, NamedTuple

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .state import BuildState, build_state_type

if TYPE_CHECKING:
    from .build import Build
    from .commit import Commit, Request
    from .permission import Permission
    from .user import User


class OwnerType(str, Enum):
    """Kind of account owning a repository."""

    USER = "user"
    ORGANIZATION = "organization"


@dataclass(frozen=True)
class UserOwner:
    id: int


@dataclass(frozen=True)
class OrganizationOwner:
    id: int


Owner = UserOwner | OrganizationOwner


class KeyPair(NamedTuple):
    """An already generated SSH key pair."""

    public_key: str
    private_key: str


class Repository(Base):
    """A source repository with a cached summary of its last build."""

    __tablename__ = "repositories"
    __table_args__ = (
        UniqueConstraint("owner_name", "name", name="uq_repository_owner_name_name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_name: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str] = mapped_column(String(255))

    # Owner association, read and written through ``owner``
    owner_type: Mapped[OwnerType | None] = mapped_column(
        SQLEnum(OwnerType, values_callable=lambda types: [t.value for t in types]),
        nullable=True,
    )
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    github_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    private: Mapped[bool] = mapped_column(Boolean, default=False)
    active: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    # Per-repo concurrency override (null = only the owner limit applies)
    max_concurrent_jobs: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Last build summary, written by the job state cascade only
    last_build_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_build_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_build_state: Mapped[BuildState | None] = mapped_column(
        build_state_type(),
        nullable=True,
    )
    last_build_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )
    last_build_finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_build_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    builds: Mapped[list["Build"]] = relationship(
        back_populates="repository",
        cascade="all, delete-orphan",
    )
    commits: Mapped[list["Commit"]] = relationship(
        back_populates="repository",
        cascade="all, delete-orphan",
    )
    requests: Mapped[list["Request"]] = relationship(
        back_populates="repository",
        cascade="all, delete-orphan",
    )
    permissions: Mapped[list["Permission"]] = relationship(
        back_populates="repository",
        cascade="all, delete-orphan",
    )
    users: Mapped[list["User"]] = relationship(
        secondary="permissions",
        viewonly=True,
    )
    key: Mapped["SslKey | None"] = relationship(
        back_populates="repository",
        cascade="all, delete-orphan",
        uselist=False,
    )

    @property
    def slug(self) -> str:
        return f"{self.owner_name}/{self.name}"

    @property
    def source_url(self) -> str:
        if self.private:
            return f"git@github.com:{self.slug}.git"
        return f"git://github.com/{self.slug}.git"

    @property
    def owner(self) -> Owner | None:
        match self.owner_type:
            case OwnerType.USER:
                return UserOwner(self.owner_id)
            case OwnerType.ORGANIZATION:
                return OrganizationOwner(self.owner_id)
            case _:
                return None

    @owner.setter
    def owner(self, owner: Owner | None) -> None:
        match owner:
            case UserOwner(id=owner_id):
                self.owner_type, self.owner_id = OwnerType.USER, owner_id
            case OrganizationOwner(id=owner_id):
                self.owner_type, self.owner_id = OwnerType.ORGANIZATION, owner_id
            case None:
                self.owner_type, self.owner_id = None, None


class SslKey(Base):
    """SSH key pair used to decrypt secure config values of a repository."""

    __tablename__ = "ssl_keys"

    id: Mapped[int] = mapped_column(primary_key=True)
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"),
        unique=True,
    )
    public_key: Mapped[str] = mapped_column(Text)
    private_key: Mapped[str] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    repository: Mapped["Repository"] = relationship(back_populates="key")


def new_repository(
    owner_name: str,
    name: str,
    *,
    owner: Owner | None = None,
    key: KeyPair | None = None,
    private: bool = False,
    active: bool = False,
    github_id: int | None = None,
    description: str | None = None,
) -> Repository:
    """Create a repository with an empty last-build summary."""
    repository = Repository(
        owner_name=owner_name,
        name=name,
        private=private,
        active=active,
        github_id=github_id,
        description=description,
        last_build_id=None,
        last_build_number=None,
        last_build_state=None,
        last_build_started_at=None,
        last_build_finished_at=None,
        last_build_duration=None,
    )
    repository.owner = owner
    if key is not None:
        repository.key = SslKey(public_key=key.public_key, private_key=key.private_key)
    return repository

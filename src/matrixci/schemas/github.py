"""Pydantic models for repositories as reported by GitHub."""

from pydantic import BaseModel, Field


class RemoteOwner(BaseModel):
    """Owning account of a remote repository."""

    login: str
    id: int | None = None
    type: str = "User"  # "User" or "Organization"


class RemotePermissions(BaseModel):
    """What the authenticated user may do on the remote repository."""

    admin: bool = False
    push: bool = False
    pull: bool = False

    def flags(self) -> dict[str, bool]:
        return {"admin": self.admin, "push": self.push, "pull": self.pull}


class RemoteRepository(BaseModel):
    """A repository descriptor from ``GET /user/repos``."""

    name: str
    owner: RemoteOwner
    permissions: RemotePermissions = Field(default_factory=RemotePermissions)
    id: int | None = None
    private: bool = False
    description: str | None = None

    @property
    def slug(self) -> str:
        return f"{self.owner.login}/{self.name}"

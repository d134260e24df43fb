"""Database models."""

from .base import Base
from .build import Build, new_build
from .commit import Commit, Request
from .job import Job
from .permission import Permission
from .repository import (
    KeyPair,
    OrganizationOwner,
    Owner,
    OwnerType,
    Repository,
    SslKey,
    UserOwner,
    new_repository,
)
from .state import FINISHED_STATES, BuildState
from .user import Organization, User

__all__ = [
    "FINISHED_STATES",
    "Base",
    "Build",
    "BuildState",
    "Commit",
    "Job",
    "KeyPair",
    "Organization",
    "OrganizationOwner",
    "Owner",
    "OwnerType",
    "Permission",
    "Repository",
    "Request",
    "SslKey",
    "User",
    "UserOwner",
    "new_build",
    "new_repository",
]

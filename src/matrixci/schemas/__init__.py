"""Pydantic schemas for payloads crossing the service boundary."""

from .github import RemoteOwner, RemotePermissions, RemoteRepository
from .queue import CommitInfo, JobMessage
from .worker_events import JobEventKind, JobEventPayload

__all__ = [
    "CommitInfo",
    "JobEventKind",
    "JobEventPayload",
    "JobMessage",
    "RemoteOwner",
    "RemotePermissions",
    "RemoteRepository",
]

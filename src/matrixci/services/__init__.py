"""Business logic services."""

from .enqueue_jobs import JobEnqueuer, JobPublisher, OwnerLimits, build_message
from .github_client import GitHubClient
from .notifications import LoggingNotifier, Notification, Notifier
from .repository_queries import RepositoryQueries
from .repository_sync import RepositorySynchronizer, SyncOutcome, SyncResult
from .state_machine import aggregate_state, dependencies_satisfied, jobs_to_cancel
from .store import StateStore, unit_of_work
from .update_job import EVENT_HANDLERS, JobUpdater, UpdateResult

__all__ = [
    "EVENT_HANDLERS",
    "GitHubClient",
    "JobEnqueuer",
    "JobPublisher",
    "JobUpdater",
    "LoggingNotifier",
    "Notification",
    "Notifier",
    "OwnerLimits",
    "RepositoryQueries",
    "RepositorySynchronizer",
    "StateStore",
    "SyncOutcome",
    "SyncResult",
    "UpdateResult",
    "aggregate_state",
    "build_message",
    "dependencies_satisfied",
    "jobs_to_cancel",
    "unit_of_work",
]

"""Procrastinate task definitions."""

from .job_tasks import enqueue_jobs, update_job
from .sync_tasks import sync_user
from .worker import app as procrastinate_app

__all__ = [
    "enqueue_jobs",
    "procrastinate_app",
    "sync_user",
    "update_job",
]

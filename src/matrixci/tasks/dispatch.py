"""Procrastinate-backed job publisher and notifier."""

import logging
from collections.abc import Sequence

import procrastinate
from procrastinate.exceptions import AlreadyEnqueued

from ..config import settings
from ..schemas.queue import JobMessage
from ..services.notifications import Notification
from .worker import app as default_app

logger = logging.getLogger(__name__)


class ProcrastinatePublisher:
    """
    Defers the remote worker's task for each job message.

    The task is deferred by name, the remote workers register it. Each
    job carries its own queueing lock, so a job already waiting in the
    queue is never deferred a second time.
    """

    def __init__(self, app: procrastinate.App | None = None, task_name: str | None = None):
        self.app = app or default_app
        self.task_name = task_name or settings.worker_task_name

    async def publish(self, message: JobMessage) -> None:
        deferrer = self.app.configure_task(
            name=self.task_name,
            queue=message.queue,
            queueing_lock=f"job:{message.job_id}",
        )
        try:
            await deferrer.defer_async(**message.model_dump(mode="json"))
        except AlreadyEnqueued:
            logger.info("Job %s is already waiting in queue %s", message.job_id, message.queue)


class ProcrastinateNotifier:
    """Hands notifications to whoever consumes the notification task."""

    def __init__(
        self,
        app: procrastinate.App | None = None,
        task_name: str | None = None,
        queue: str | None = None,
    ):
        self.app = app or default_app
        self.task_name = task_name or settings.notification_task_name
        self.queue = queue or settings.notification_queue

    async def notify(self, notifications: Sequence[Notification]) -> None:
        deferrer = self.app.configure_task(name=self.task_name, queue=self.queue)
        for notification in notifications:
            await deferrer.defer_async(event=notification.event, payload=notification.payload)

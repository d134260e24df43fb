"""Procrastinate worker configuration."""

import procrastinate

from ..config import settings
from ..errors import PersistenceError

# Queues the core's own tasks run on
EVENTS_QUEUE = "job_events"
ENQUEUE_QUEUE = "enqueue"
SYNC_QUEUE = "sync"

# Store failures roll the unit of work back, so the task is safe to rerun
RETRY_ON_STORE_ERRORS = procrastinate.RetryStrategy(
    max_attempts=5,
    wait=5,
    retry_exceptions={PersistenceError},
)

# Create procrastinate app with async connector
app = procrastinate.App(
    connector=procrastinate.PsycopgConnector(
        conninfo=settings.procrastinate_database_url,
        kwargs={},
    ),
    import_paths=[
        "matrixci.tasks.job_tasks",
        "matrixci.tasks.sync_tasks",
    ],
)

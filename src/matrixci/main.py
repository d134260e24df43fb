"""Worker process entrypoint."""

import asyncio
import logging

from .database import init_db
from .tasks.worker import ENQUEUE_QUEUE, EVENTS_QUEUE, SYNC_QUEUE
from .tasks.worker import app as procrastinate_app
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)


async def run_worker(queues: list[str] | None = None) -> None:
    """Run the procrastinate worker for the core's queues until stopped."""
    setup_logging()
    await init_db()
    queues = queues or [EVENTS_QUEUE, ENQUEUE_QUEUE, SYNC_QUEUE]
    logger.info("Starting worker on queues %s", ", ".join(queues))
    async with procrastinate_app.open_async():
        await procrastinate_app.run_worker_async(queues=queues)


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()

"""
RQ worker for batch AI evaluations.

    python -m procureflow.workers.worker [--burst]
"""
import sys

from redis import Redis
from rq import Queue, Worker

from procureflow.core.config import settings
from procureflow.core.logging import setup_logging, get_logger
from procureflow.workers.jobs import EVALUATION_QUEUE

setup_logging()
logger = get_logger(__name__)


def build_worker(redis_conn: Redis) -> Worker:
    queues = [Queue(EVALUATION_QUEUE, connection=redis_conn)]
    return Worker(queues, connection=redis_conn, name=f"{settings.APP_NAME.lower()}-evaluator")


def run_worker(burst: bool = False):
    """Process queued evaluations; with burst, exit once the queue is empty."""
    worker = build_worker(Redis.from_url(settings.REDIS_URL))
    logger.info(f"Starting worker {worker.name} on queue '{EVALUATION_QUEUE}' (burst={burst})")
    worker.work(burst=burst)


if __name__ == "__main__":
    run_worker(burst="--burst" in sys.argv[1:])

"""
Background jobs: batch AI evaluation on RQ.

Jobs carry the caller's principal claims rather than a token so the
worker re-runs the same authorization as the inline request.
"""
from typing import Any, Dict

from redis import Redis
from rq import Queue
from rq.job import Job

from procureflow.core.config import settings
from procureflow.core.logging import get_logger

logger = get_logger(__name__)

EVALUATION_QUEUE = "evaluations"
BATCH_JOB_TIMEOUT = 1800
RESULT_TTL = 86400


def get_queue(name: str = EVALUATION_QUEUE) -> Queue:
    return Queue(name, connection=Redis.from_url(settings.REDIS_URL))


def batch_ai_evaluation_job(principal_claims: Dict[str, Any], market_request_id: str) -> Dict[str, Any]:
    """Run a batch AI evaluation on behalf of the principal that queued it."""
    from procureflow.core.rbac import principal_from_claims
    from procureflow.db.session import get_db_context
    from procureflow.services.accounts import resolve_principal
    from procureflow.services.ai_evaluation import batch_evaluate

    with get_db_context() as db:
        principal = resolve_principal(db, principal_from_claims(principal_claims))
        logger.info(f"Running batch AI evaluation for market request {market_request_id} as {principal.id}")
        return batch_evaluate(db, principal, market_request_id)


def enqueue_batch_evaluation(principal_claims: Dict[str, Any], market_request_id: str) -> Job:
    queue = get_queue()
    return queue.enqueue(
        batch_ai_evaluation_job,
        principal_claims,
        market_request_id,
        job_timeout=BATCH_JOB_TIMEOUT,
        result_ttl=RESULT_TTL,
        description=f"batch-evaluate market request {market_request_id}",
    )

import time

from ispsync.celery_app import celery_app
from ispsync.db import SessionLocal
from ispsync.logging import get_logger
from ispsync.metrics import observe_job
from ispsync.services import sync_queue

logger = get_logger(__name__)


@celery_app.task(name="ispsync.tasks.network_sync.drain_sync_queue")
def drain_sync_queue(limit: int | None = None):
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        return sync_queue.drain(session, limit)
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("network_sync_drain", status, time.monotonic() - start)


@celery_app.task(name="ispsync.tasks.network_sync.requeue_stale_sync_tasks")
def requeue_stale_sync_tasks():
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        recovered = sync_queue.requeue_stale(session)
        if recovered:
            logger.warning("SYNC_QUEUE_STALE_RECOVERED count=%s", recovered)
        return recovered
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("network_sync_requeue_stale", status, time.monotonic() - start)

import time

from ispsync.celery_app import celery_app
from ispsync.db import SessionLocal
from ispsync.logging import get_logger
from ispsync.metrics import observe_job
from ispsync.services import auto_suspend as auto_suspend_service


@celery_app.task(name="ispsync.tasks.auto_suspend.run_auto_suspend")
def run_auto_suspend():
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    logger = get_logger(__name__)
    logger.info("AUTO_SUSPEND_JOB_START")
    try:
        summary = auto_suspend_service.run_auto_suspend(session)
        return summary.model_dump(mode="json")
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("auto_suspend", status, time.monotonic() - start)

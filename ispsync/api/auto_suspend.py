from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ispsync.api.deps import get_db, require_scheduler_trigger
from ispsync.logging import get_logger
from ispsync.schemas.auto_suspend import AutoSuspendSummary
from ispsync.services import auto_suspend as auto_suspend_service

router = APIRouter(prefix="/auto-suspend", tags=["auto-suspend"])
logger = get_logger(__name__)


@router.post("/run", response_model=AutoSuspendSummary)
def run_auto_suspend(
    actor=Depends(require_scheduler_trigger),
    db: Session = Depends(get_db),
):
    logger.info("AUTO_SUSPEND_TRIGGERED actor_type=%s actor_id=%s", actor["actor_type"], actor["actor_id"])
    return auto_suspend_service.run_auto_suspend(db)

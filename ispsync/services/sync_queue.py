"""Durable sync task queue.

Tasks live in ``network_sync_tasks``. Workers pull due tasks with
``dequeue_batch``; claiming a task flips it to ``in_progress`` with a
conditional UPDATE, which doubles as the per-(tenant, customer, integration)
in-flight lock. A partial unique index on in-progress rows backs the lock
when two workers race.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from ispsync.config import settings
from ispsync.logging import get_logger
from ispsync.models.network import NetworkSyncTask, SyncAction, SyncTaskStatus
from ispsync.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_for_tenant_or_404,
    parse_uuid,
    utcnow,
    validate_enum,
)
from ispsync.services.response import ListResponseMixin

logger = get_logger(__name__)

OPEN_STATUSES = (SyncTaskStatus.pending, SyncTaskStatus.retrying)
TERMINAL_STATUSES = (SyncTaskStatus.success, SyncTaskStatus.failed)
# Enable and disable cancel each other out; only the newest intent matters.
_OPPOSITE_ACTIONS = {
    SyncAction.enable: SyncAction.disable,
    SyncAction.disable: SyncAction.enable,
}


def backoff_seconds(retry_count: int) -> int:
    """Delay before retry number ``retry_count`` (1-based)."""
    exponent = max(retry_count - 1, 0)
    delay = settings.network_sync_backoff_base_seconds * (
        settings.network_sync_backoff_factor ** exponent
    )
    return min(delay, settings.network_sync_backoff_cap_seconds)


def _triple_filter(query, model, tenant_id, integration_id, customer_id):
    query = query.filter(model.tenant_id == tenant_id).filter(
        model.integration_id == integration_id
    )
    if customer_id is None:
        return query.filter(model.customer_id.is_(None))
    return query.filter(model.customer_id == customer_id)


def enqueue(
    db: Session,
    tenant_id,
    integration_id,
    customer_id,
    action: SyncAction,
    *,
    triggered_by: str = "manual",
    triggered_by_user: str | None = None,
    priority: int = 0,
    max_retries: int | None = None,
    payload: dict | None = None,
    coalesce: bool = True,
) -> NetworkSyncTask:
    """Queue a sync action.

    With ``coalesce`` an open task for the same customer, integration and
    action is returned instead of a duplicate. An open task for the opposite
    enable/disable action is superseded either way.
    """
    tenant_id = coerce_uuid(tenant_id)
    integration_id = coerce_uuid(integration_id)
    customer_id = coerce_uuid(customer_id)
    action = validate_enum(action, SyncAction, "action")

    open_tasks = _triple_filter(
        db.query(NetworkSyncTask), NetworkSyncTask, tenant_id, integration_id, customer_id
    ).filter(NetworkSyncTask.status.in_(OPEN_STATUSES))

    if coalesce:
        existing = (
            open_tasks.filter(NetworkSyncTask.action == action)
            .order_by(NetworkSyncTask.created_at.asc())
            .first()
        )
        if existing:
            logger.info(
                "SYNC_TASK_COALESCED task_id=%s action=%s customer_id=%s",
                existing.id,
                action.value,
                customer_id,
            )
            return existing

    task = NetworkSyncTask(
        tenant_id=tenant_id,
        integration_id=integration_id,
        customer_id=customer_id,
        action=action,
        status=SyncTaskStatus.pending,
        priority=priority,
        max_retries=settings.network_sync_max_retries if max_retries is None else max_retries,
        payload={
            **(payload or {}),
            "triggered_by": triggered_by,
            "triggered_by_user": triggered_by_user,
        },
        next_attempt_at=utcnow(),
    )
    db.add(task)
    db.flush()

    opposite = _OPPOSITE_ACTIONS.get(action)
    if opposite is not None:
        superseded = open_tasks.filter(NetworkSyncTask.action == opposite).all()
        for stale in superseded:
            stale.status = SyncTaskStatus.failed
            stale.last_error = f"Superseded by {action.value} task {task.id}"
            stale.completed_at = utcnow()
            logger.info(
                "SYNC_TASK_SUPERSEDED task_id=%s by_task_id=%s", stale.id, task.id
            )

    db.commit()
    db.refresh(task)
    logger.info(
        "SYNC_TASK_ENQUEUED task_id=%s tenant_id=%s action=%s customer_id=%s triggered_by=%s",
        task.id,
        tenant_id,
        action.value,
        customer_id,
        triggered_by,
    )
    return task


def claim(db: Session, task: NetworkSyncTask) -> bool:
    """Atomically move a due open task to ``in_progress``.

    Returns False when the task is not due, already taken, or another task for
    the same customer and integration is in flight.
    """
    now = utcnow()
    in_flight = aliased(NetworkSyncTask)
    busy = _triple_filter(
        db.query(in_flight.id),
        in_flight,
        task.tenant_id,
        task.integration_id,
        task.customer_id,
    ).filter(in_flight.status == SyncTaskStatus.in_progress)
    stmt = (
        update(NetworkSyncTask)
        .where(NetworkSyncTask.id == task.id)
        .where(NetworkSyncTask.status.in_(OPEN_STATUSES))
        .where(NetworkSyncTask.next_attempt_at <= now)
        .where(~busy.exists())
        .values(status=SyncTaskStatus.in_progress, started_at=now, completed_at=None)
        .execution_options(synchronize_session=False)
    )
    try:
        claimed = db.execute(stmt).rowcount == 1
        db.commit()
    except IntegrityError:
        # Lost the race on the in-flight index to another worker.
        db.rollback()
        return False
    if not claimed:
        return False
    db.refresh(task)
    return True


def _head_of_line(db: Session, task: NetworkSyncTask) -> NetworkSyncTask | None:
    return (
        _triple_filter(
            db.query(NetworkSyncTask),
            NetworkSyncTask,
            task.tenant_id,
            task.integration_id,
            task.customer_id,
        )
        .filter(NetworkSyncTask.status.in_(OPEN_STATUSES))
        .order_by(NetworkSyncTask.created_at.asc())
        .first()
    )


def dequeue_batch(db: Session, limit: int | None = None) -> list[NetworkSyncTask]:
    """Claim up to ``limit`` due tasks, at most one per customer/integration.

    Within one customer/integration tasks run strictly in creation order: if
    the oldest open task is still backing off, newer ones wait behind it.
    """
    limit = limit or settings.sync_queue_batch_size
    now = utcnow()
    candidates = (
        db.query(NetworkSyncTask)
        .filter(NetworkSyncTask.status.in_(OPEN_STATUSES))
        .filter(NetworkSyncTask.next_attempt_at <= now)
        .order_by(NetworkSyncTask.priority.desc(), NetworkSyncTask.created_at.asc())
        .limit(limit * 4)
        .all()
    )
    claimed: list[NetworkSyncTask] = []
    seen: set[tuple] = set()
    for candidate in candidates:
        key = (candidate.tenant_id, candidate.integration_id, candidate.customer_id)
        if key in seen:
            continue
        seen.add(key)
        head = _head_of_line(db, candidate)
        if head is None:
            continue
        if claim(db, head):
            claimed.append(head)
        if len(claimed) >= limit:
            break
    return claimed


def mark(
    db: Session,
    task: NetworkSyncTask | str,
    status: SyncTaskStatus,
    *,
    error: str | None = None,
    next_attempt_at=None,
    commit: bool = True,
) -> NetworkSyncTask:
    if not isinstance(task, NetworkSyncTask):
        found = db.get(NetworkSyncTask, coerce_uuid(task))
        if not found:
            raise ValueError(f"Sync task {task} not found")
        task = found
    status = validate_enum(status, SyncTaskStatus, "status")
    task.status = status
    task.last_error = error
    if status == SyncTaskStatus.retrying:
        task.next_attempt_at = next_attempt_at or utcnow()
        task.completed_at = None
    elif status in TERMINAL_STATUSES:
        task.completed_at = utcnow()
    if commit:
        db.commit()
        db.refresh(task)
    return task


def requeue_stale(db: Session, liveness_seconds: int | None = None) -> int:
    """Recover tasks left ``in_progress`` by a worker that died mid-call."""
    liveness = liveness_seconds or settings.sync_task_liveness_seconds
    now = utcnow()
    cutoff = now - timedelta(seconds=liveness)
    stale_tasks = (
        db.query(NetworkSyncTask)
        .filter(NetworkSyncTask.status == SyncTaskStatus.in_progress)
        .filter(NetworkSyncTask.started_at < cutoff)
        .all()
    )
    for task in stale_tasks:
        error = f"Worker lost task after {liveness}s in progress"
        if task.retry_count < task.max_retries:
            task.retry_count += 1
            mark(db, task, SyncTaskStatus.retrying, error=error, next_attempt_at=now, commit=False)
        else:
            mark(db, task, SyncTaskStatus.failed, error=error, commit=False)
        logger.warning(
            "SYNC_TASK_STALE task_id=%s retry_count=%s status=%s",
            task.id,
            task.retry_count,
            task.status.value,
        )
    db.commit()
    return len(stale_tasks)


def drain(db: Session, limit: int | None = None) -> dict:
    """Claim a batch and run each task through the executor."""
    from ispsync.services.network_sync import execute

    counts = {"claimed": 0, "succeeded": 0, "failed": 0, "retrying": 0}
    for task in dequeue_batch(db, limit):
        counts["claimed"] += 1
        execute(db, task)
        if task.status == SyncTaskStatus.success:
            counts["succeeded"] += 1
        elif task.status == SyncTaskStatus.retrying:
            counts["retrying"] += 1
        else:
            counts["failed"] += 1
    if counts["claimed"]:
        logger.info("SYNC_QUEUE_DRAINED %s", counts)
    return counts


class SyncTasks(ListResponseMixin):
    @staticmethod
    def get(db: Session, tenant_id, task_id) -> NetworkSyncTask:
        return get_for_tenant_or_404(db, NetworkSyncTask, tenant_id, task_id, "Sync task not found")

    @staticmethod
    def list(
        db: Session,
        tenant_id,
        status: str | None = None,
        customer_id: str | None = None,
        order_by: str = "created_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(NetworkSyncTask).filter(
            NetworkSyncTask.tenant_id == coerce_uuid(tenant_id)
        )
        if status:
            query = query.filter(
                NetworkSyncTask.status == validate_enum(status, SyncTaskStatus, "status")
            )
        if customer_id:
            query = query.filter(NetworkSyncTask.customer_id == parse_uuid(customer_id, "customer_id"))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": NetworkSyncTask.created_at,
                "next_attempt_at": NetworkSyncTask.next_attempt_at,
            },
        )
        return apply_pagination(query, limit, offset).all()


sync_tasks = SyncTasks()

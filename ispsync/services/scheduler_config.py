"""Celery settings and the beat schedule, both driven by environment variables.

Periodic jobs:

* ``network_sync_drain`` drains the sync queue every
  ``SYNC_QUEUE_DRAIN_INTERVAL_SECONDS`` (30s, never under 5s).
* ``network_sync_requeue_stale`` releases tasks abandoned by a dead worker
  every ``SYNC_QUEUE_STALE_SWEEP_MINUTES`` (5m).
* ``auto_suspend_daily`` runs the overdue sweep at ``AUTO_SUSPEND_HOUR``
  (01:00 in ``CELERY_TIMEZONE``).
"""

import os
from datetime import timedelta

from celery.schedules import crontab

from ispsync.logging import get_logger

logger = get_logger(__name__)

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _env_value(name: str) -> str | None:
    return os.getenv(name) or None


def _env_bool(name: str) -> bool | None:
    raw = _env_value(name)
    return None if raw is None else raw.strip().lower() in _TRUTHY


def _env_int(name: str) -> int | None:
    raw = _env_value(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("SCHEDULER_CONFIG_IGNORED name=%s value=%r", name, raw)
        return None


def _enabled(name: str) -> bool:
    # Unset means on.
    return _env_bool(name) is not False


def get_celery_config() -> dict:
    redis_url = _env_value("REDIS_URL")
    return {
        "broker_url": _env_value("CELERY_BROKER_URL") or redis_url or "redis://localhost:6379/0",
        "result_backend": (
            _env_value("CELERY_RESULT_BACKEND") or redis_url or "redis://localhost:6379/1"
        ),
        "timezone": _env_value("CELERY_TIMEZONE") or "UTC",
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
        "beat_max_loop_interval": _env_int("CELERY_BEAT_MAX_LOOP_INTERVAL") or 5,
    }


def build_beat_schedule() -> dict:
    schedule: dict[str, dict] = {}

    if _enabled("SYNC_QUEUE_DRAIN_ENABLED"):
        drain_every = max(_env_int("SYNC_QUEUE_DRAIN_INTERVAL_SECONDS") or 30, 5)
        sweep_every = max(_env_int("SYNC_QUEUE_STALE_SWEEP_MINUTES") or 5, 1)
        schedule["network_sync_drain"] = {
            "task": "ispsync.tasks.network_sync.drain_sync_queue",
            "schedule": timedelta(seconds=drain_every),
        }
        schedule["network_sync_requeue_stale"] = {
            "task": "ispsync.tasks.network_sync.requeue_stale_sync_tasks",
            "schedule": timedelta(minutes=sweep_every),
        }

    if _enabled("AUTO_SUSPEND_ENABLED"):
        hour = _env_int("AUTO_SUSPEND_HOUR")
        schedule["auto_suspend_daily"] = {
            "task": "ispsync.tasks.auto_suspend.run_auto_suspend",
            "schedule": crontab(minute=0, hour=1 if hour is None else min(max(hour, 0), 23)),
        }

    return schedule

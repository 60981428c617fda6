from ispsync.tasks.auto_suspend import run_auto_suspend
from ispsync.tasks.network_sync import drain_sync_queue, requeue_stale_sync_tasks

__all__ = [
    "drain_sync_queue",
    "requeue_stale_sync_tasks",
    "run_auto_suspend",
]

"""
Celery Worker Configuration

Background jobs for the ordering platform run here, currently the
workspace Excel export. Redis is both broker and result backend; export
jobs go to their own queue so a slow spreadsheet write never holds up
other work.

Run:
    celery -A app.celery_worker worker -Q ordering,exports --loglevel=info
"""

from celery import Celery

from app.core.config import get_settings

settings = get_settings()

EXPORT_QUEUE = "exports"

celery_app = Celery(
    "table_ordering",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_default_queue="ordering",
    task_routes={
        "app.tasks.export_workspace_to_excel": {"queue": EXPORT_QUEUE},
    },

    # An export waits at most excel_lock_timeout for the workbook lock
    task_soft_time_limit=settings.excel_lock_timeout + 60,
    task_time_limit=settings.excel_lock_timeout + 120,

    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,

    broker_connection_retry_on_startup=True,
)


if __name__ == "__main__":
    celery_app.start()

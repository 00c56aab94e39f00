"""Celery app for the scheduled job worker and AI queue runs. Uses Redis; DB session per task."""
from celery import Celery
from .config import settings

celery_app = Celery(
    "support_desk",
    broker=settings.celery_broker,
    backend=settings.redis_url,
    include=["app.tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "create-sync-jobs": {
            "task": "app.tasks.create_sync_jobs",
            "schedule": settings.sync_schedule_interval_s,
        },
        "run-job-worker": {
            "task": "app.tasks.run_job_worker",
            "schedule": settings.worker_schedule_interval_s,
        },
        "process-classification-queue": {
            "task": "app.tasks.process_classification_queue",
            "schedule": settings.worker_schedule_interval_s,
        },
        "process-draft-queue": {
            "task": "app.tasks.process_draft_queue",
            "schedule": settings.worker_schedule_interval_s,
        },
    },
)

"""Celery tasks: scheduled sync job creation, job worker and AI queue runs. DB session per task."""
import asyncio
import logging
from typing import Optional

from celery import shared_task

from .database import SessionLocal
from .exceptions import NotFoundError
from .services.job_creator import create_sync_jobs as create_jobs
from .services.job_worker import run_job_worker as run_worker
from .services.queue_processor import classification_queue, draft_queue, process_queue

logger = logging.getLogger(__name__)


@shared_task(bind=True, name="app.tasks.create_sync_jobs")
def create_sync_jobs(self, mailbox_id: Optional[str] = None, batch_size: Optional[int] = None):
    """Queue incremental syncs; the next worker run picks them up."""
    db = SessionLocal()
    try:
        return create_jobs(db, mailbox_id=mailbox_id, batch_size=batch_size)
    except NotFoundError as e:
        logger.info(f"No sync jobs created: {e.message}")
        return {"success": True, "jobs": [], "message": e.message}
    finally:
        db.close()


@shared_task(bind=True, name="app.tasks.run_job_worker")
def run_job_worker(self):
    db = SessionLocal()
    try:
        return asyncio.run(run_worker(db))
    finally:
        db.close()


@shared_task(bind=True, name="app.tasks.process_classification_queue")
def process_classification_queue(self):
    db = SessionLocal()
    try:
        return asyncio.run(process_queue(db, classification_queue()))
    finally:
        db.close()


@shared_task(bind=True, name="app.tasks.process_draft_queue")
def process_draft_queue(self):
    db = SessionLocal()
    try:
        return asyncio.run(process_queue(db, draft_queue()))
    finally:
        db.close()

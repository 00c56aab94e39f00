"""Sync job store: creation, atomic claims, outcomes and the staleness reclaimer.

Every status transition that can race with another worker is a single
conditional UPDATE (compare-and-swap on status); a rowcount of zero means
someone else got there first.
"""
import logging
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import (
    ACTIVE_JOB_STATUSES,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    SyncJob,
    SyncState,
    empty_progress,
    utcnow,
)

logger = logging.getLogger(__name__)

# How many candidates claim_next_pending_job tries before giving up on a contended queue.
CLAIM_ATTEMPTS = 5


def job_to_dict(job: SyncJob) -> dict:
    return {
        "id": job.id,
        "mailbox_id": job.mailbox_id,
        "status": job.status,
        "job_type": job.job_type,
        "batch_size": job.batch_size,
        "progress": dict(job.progress or empty_progress()),
        "retry_count": job.retry_count,
        "max_retries": job.max_retries,
        "error_message": job.error_message,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }


def get_job(db: Session, job_id: str) -> Optional[SyncJob]:
    return db.get(SyncJob, job_id)


def get_active_job(db: Session, mailbox_id: str) -> Optional[SyncJob]:
    return (
        db.query(SyncJob)
        .filter(SyncJob.mailbox_id == mailbox_id, SyncJob.status.in_(ACTIVE_JOB_STATUSES))
        .order_by(SyncJob.created_at.asc())
        .first()
    )


def create_pending_job(
    db: Session,
    mailbox_id: str,
    job_type: str,
    batch_size: int,
    max_retries: int = 3,
) -> Tuple[SyncJob, bool]:
    """
    Insert a pending job. Returns (job, created).

    The partial unique index on active jobs makes a concurrent duplicate fail
    with IntegrityError; in that case the job that won is returned instead.
    """
    job = SyncJob(
        mailbox_id=mailbox_id,
        status=STATUS_PENDING,
        job_type=job_type,
        batch_size=batch_size,
        progress=empty_progress(),
        retry_count=0,
        max_retries=max_retries,
        created_at=utcnow(),
    )
    db.add(job)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = get_active_job(db, mailbox_id)
        if existing is None:
            raise
        logger.info(f"Active job {existing.id} already exists for mailbox {mailbox_id}")
        return existing, False
    db.refresh(job)
    return job, True


def claim_job(db: Session, job_id: str) -> bool:
    """pending -> processing for exactly one caller."""
    now = utcnow()
    result = db.execute(
        update(SyncJob)
        .where(SyncJob.id == job_id, SyncJob.status == STATUS_PENDING)
        .values(status=STATUS_PROCESSING, started_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def claim_next_pending_job(db: Session, attempts: int = CLAIM_ATTEMPTS) -> Optional[SyncJob]:
    """Claim the oldest pending job (FIFO). None when the queue is empty."""
    for _ in range(max(1, attempts)):
        job_id = db.execute(
            select(SyncJob.id)
            .where(SyncJob.status == STATUS_PENDING)
            .order_by(SyncJob.created_at.asc(), SyncJob.id.asc())
            .limit(1)
        ).scalar()
        if job_id is None:
            return None
        if claim_job(db, job_id):
            return get_job(db, job_id)
        logger.info(f"Lost claim race for job {job_id}, trying next")
    return None


def complete_job(db: Session, job: SyncJob, progress: dict):
    now = utcnow()
    job.status = STATUS_COMPLETED
    job.progress = dict(progress)
    job.completed_at = now
    job.error_message = None
    job.updated_at = now
    db.commit()


def requeue_job(db: Session, job: SyncJob, progress: dict):
    """Batch done but mail remains: leave the job for a later worker run."""
    job.status = STATUS_PENDING
    job.progress = dict(progress)
    job.started_at = None
    job.updated_at = utcnow()
    db.commit()


def fail_job(db: Session, job: SyncJob, error: str):
    now = utcnow()
    job.status = STATUS_FAILED
    job.error_message = error
    job.completed_at = now
    job.updated_at = now
    db.commit()


def record_job_failure(db: Session, job: SyncJob, error: str) -> str:
    """
    Count a failed attempt. The job goes back to pending until its retry
    budget is spent, then becomes failed for good. Returns the new status.
    """
    if job.status in (STATUS_COMPLETED, STATUS_FAILED):
        return job.status
    retry_count = min((job.retry_count or 0) + 1, job.max_retries)
    job.retry_count = retry_count
    job.error_message = error
    job.updated_at = utcnow()
    if retry_count >= job.max_retries:
        job.status = STATUS_FAILED
        job.completed_at = job.updated_at
    else:
        job.status = STATUS_PENDING
        job.started_at = None
    db.commit()
    return job.status


def reset_stale_sync_jobs(db: Session, stale_after_s: int) -> dict:
    """
    Reclaim jobs stuck in processing since before now - stale_after_s.

    Stale jobs with retries left go back to pending (started_at cleared,
    retry_count + 1); the others fail. Mailboxes left with is_syncing set but
    no active job get the flag cleared. Running it again with nothing stale
    changes nothing.
    """
    now = utcnow()
    cutoff = now - timedelta(seconds=stale_after_s)
    stale = (
        SyncJob.status == STATUS_PROCESSING,
        SyncJob.started_at.is_not(None),
        SyncJob.started_at < cutoff,
    )
    reset = db.execute(
        update(SyncJob)
        .where(*stale, SyncJob.retry_count + 1 < SyncJob.max_retries)
        .values(
            status=STATUS_PENDING,
            started_at=None,
            retry_count=SyncJob.retry_count + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    failed = db.execute(
        update(SyncJob)
        .where(*stale, SyncJob.retry_count + 1 >= SyncJob.max_retries)
        .values(
            status=STATUS_FAILED,
            retry_count=SyncJob.max_retries,
            completed_at=now,
            error_message="Job timed out in processing",
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    active_mailboxes = select(SyncJob.mailbox_id).where(SyncJob.status.in_(ACTIVE_JOB_STATUSES))
    released = db.execute(
        update(SyncState)
        .where(SyncState.is_syncing.is_(True), SyncState.mailbox_id.not_in(active_mailboxes))
        .values(is_syncing=False, updated_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    if reset or failed or released:
        logger.info(f"Stale job sweep: reset={reset} failed={failed} released={released}")
    return {"reset": reset or 0, "failed": failed or 0, "released": released or 0}

"""Create at most one outstanding sync job per eligible mailbox."""
import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import NotFoundError
from ..models import Mailbox
from ..sync_jobs_db import create_pending_job, get_active_job, job_to_dict
from ..sync_state_db import ensure_sync_state, get_sync_state

logger = logging.getLogger(__name__)


def _target_mailboxes(db: Session, mailbox_id: Optional[str]) -> List[Mailbox]:
    if mailbox_id:
        mailbox = (
            db.query(Mailbox)
            .filter(Mailbox.id == mailbox_id, Mailbox.is_active.is_(True))
            .first()
        )
        if mailbox is None:
            raise NotFoundError("Mailbox not found or inactive")
        return [mailbox]
    mailboxes = db.query(Mailbox).filter(Mailbox.is_active.is_(True)).order_by(Mailbox.created_at.asc()).all()
    if not mailboxes:
        raise NotFoundError("No active mailboxes found")
    return mailboxes


def create_job_for_mailbox(db: Session, mailbox: Mailbox, job_type: str, batch_size: int) -> Optional[dict]:
    """
    Returns the job dict (new or already outstanding), or None when the
    mailbox is mid-sync and was skipped.
    """
    state = get_sync_state(db, mailbox.id)
    if state is not None and state.is_syncing:
        logger.info(f"[{mailbox.name}] Already syncing, skipping job creation")
        return None

    existing = get_active_job(db, mailbox.id)
    if existing is not None:
        logger.info(f"[{mailbox.name}] Job already exists: {existing.status}")
        return job_to_dict(existing)

    if state is None:
        ensure_sync_state(db, mailbox.id)

    job, created = create_pending_job(
        db,
        mailbox.id,
        job_type=job_type,
        batch_size=batch_size,
        max_retries=settings.sync_job_max_retries,
    )
    if created:
        logger.info(f"[{mailbox.name}] Created sync job: {job.id}")
    return job_to_dict(job)


def create_sync_jobs(
    db: Session,
    mailbox_id: Optional[str] = None,
    batch_size: Optional[int] = None,
    job_type: Optional[str] = None,
) -> dict:
    """One job per active mailbox (or the given one). A failing mailbox is logged and skipped."""
    batch_size = batch_size or settings.sync_default_batch_size
    job_type = job_type or settings.sync_default_job_type
    mailboxes = _target_mailboxes(db, mailbox_id)

    jobs = []
    skipped = 0
    for mailbox in mailboxes:
        try:
            entry = create_job_for_mailbox(db, mailbox, job_type, batch_size)
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"[{mailbox.name}] Failed to create job")
            skipped += 1
            continue
        if entry is None:
            skipped += 1
            continue
        jobs.append(entry)

    message = f"Created {len(jobs)} sync job(s)"
    if skipped:
        message += f", skipped {skipped} mailbox(es)"
    return {"success": True, "jobs": jobs, "message": message}

"""AI enrichment queues (classification, draft generation): enqueue, claim, outcome."""
import logging
from typing import List, Optional, Type

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .config import settings
from .models import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    ClassificationQueueItem,
    DraftQueueItem,
    Email,
    QueueItemMixin,
    utcnow,
)

logger = logging.getLogger(__name__)


def enqueue_classification(
    db: Session,
    email_id: str,
    ticket_id: str,
    priority: Optional[int] = None,
    max_retries: Optional[int] = None,
    commit: bool = True,
) -> ClassificationQueueItem:
    item = ClassificationQueueItem(
        email_id=email_id,
        ticket_id=ticket_id,
        status=STATUS_PENDING,
        retry_count=0,
        max_retries=max_retries if max_retries is not None else settings.queue_default_max_retries,
        priority=priority if priority is not None else settings.queue_default_priority,
        created_at=utcnow(),
    )
    db.add(item)
    if commit:
        db.commit()
    return item


def enqueue_draft(
    db: Session,
    ticket_id: str,
    priority: Optional[int] = None,
    max_retries: Optional[int] = None,
    commit: bool = True,
) -> DraftQueueItem:
    item = DraftQueueItem(
        ticket_id=ticket_id,
        status=STATUS_PENDING,
        retry_count=0,
        max_retries=max_retries if max_retries is not None else settings.queue_default_max_retries,
        priority=priority if priority is not None else settings.queue_default_priority,
        created_at=utcnow(),
    )
    db.add(item)
    if commit:
        db.commit()
    return item


def fetch_pending_items(db: Session, model: Type[QueueItemMixin], limit: int) -> List[QueueItemMixin]:
    """Pending items, most urgent (lowest priority value) first, then oldest."""
    stmt = (
        select(model)
        .where(model.status == STATUS_PENDING)
        .order_by(model.priority.asc(), model.created_at.asc(), model.id.asc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def claim_item(db: Session, model: Type[QueueItemMixin], item_id: str) -> bool:
    result = db.execute(
        update(model)
        .where(model.id == item_id, model.status == STATUS_PENDING)
        .values(status=STATUS_PROCESSING, started_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def complete_item(db: Session, model: Type[QueueItemMixin], item_id: str) -> bool:
    result = db.execute(
        update(model)
        .where(model.id == item_id, model.status == STATUS_PROCESSING)
        .values(status=STATUS_COMPLETED, completed_at=utcnow(), error_message=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def record_item_failure(db: Session, model: Type[QueueItemMixin], item_id: str, error: str) -> Optional[QueueItemMixin]:
    """
    Count a failed attempt: retry_count goes up (never past max_retries).
    At the ceiling the item is failed for good, otherwise it is pending again.
    Items that are not processing are left alone.
    """
    item = db.get(model, item_id)
    if item is None or item.status != STATUS_PROCESSING:
        return item
    retry_count = min((item.retry_count or 0) + 1, item.max_retries)
    item.retry_count = retry_count
    item.error_message = error
    if retry_count >= item.max_retries:
        item.status = STATUS_FAILED
        item.completed_at = utcnow()
    else:
        item.status = STATUS_PENDING
        item.started_at = None
    db.commit()
    return item


def classification_payload(db: Session, item: ClassificationQueueItem) -> dict:
    """Denormalized email context sent along with a classification request."""
    email = db.get(Email, item.email_id)
    if email is None:
        return {"email_id": item.email_id, "ticket_id": item.ticket_id}
    return {
        "email_id": email.id,
        "ticket_id": item.ticket_id,
        "subject": email.subject or "",
        "body": email.body_text or email.body_html or "",
        "from_address": email.from_address or "",
        "from_name": email.from_name or "",
    }


def draft_payload(db: Session, item: DraftQueueItem) -> dict:
    return {"ticket_id": item.ticket_id}

"""Classification and draft queue processors: claim -> delegate -> complete, or retry with a counter."""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..function_client import FunctionClient, FunctionResponse
from ..models import STATUS_FAILED, ClassificationQueueItem, DraftQueueItem, QueueItemMixin
from ..queue_db import (
    claim_item,
    classification_payload,
    complete_item,
    draft_payload,
    fetch_pending_items,
    record_item_failure,
)

logger = logging.getLogger(__name__)

Delegate = Callable[[dict], Awaitable[FunctionResponse]]


class DelegateFailed(Exception):
    pass


@dataclass
class QueueSpec:
    name: str
    model: Type[QueueItemMixin]
    batch_size: int
    build_payload: Callable[[Session, QueueItemMixin], dict]
    delegate: Delegate


def _http_delegate(function_name: str, client: Optional[FunctionClient] = None) -> Delegate:
    client = client or FunctionClient()

    async def _call(payload: dict) -> FunctionResponse:
        return await client.call(function_name, payload)

    return _call


def classification_queue(delegate: Optional[Delegate] = None, client: Optional[FunctionClient] = None) -> QueueSpec:
    return QueueSpec(
        name="classification",
        model=ClassificationQueueItem,
        batch_size=settings.classification_queue_batch_size,
        build_payload=classification_payload,
        delegate=delegate or _http_delegate("classify-email", client),
    )


def draft_queue(delegate: Optional[Delegate] = None, client: Optional[FunctionClient] = None) -> QueueSpec:
    return QueueSpec(
        name="draft",
        model=DraftQueueItem,
        batch_size=settings.draft_queue_batch_size,
        build_payload=draft_payload,
        delegate=delegate or _http_delegate("auto-generate-draft", client),
    )


async def process_queue_item(db: Session, spec: QueueSpec, item: QueueItemMixin) -> dict:
    item_id, ticket_id = item.id, item.ticket_id
    entry = {"id": item_id, "ticket_id": ticket_id}
    if not claim_item(db, spec.model, item_id):
        return {**entry, "status": "skipped", "reason": "already claimed"}
    try:
        resp = await spec.delegate(spec.build_payload(db, item))
        if not resp.ok:
            raise DelegateFailed(f"{spec.name} failed: {resp.status_code} {resp.error}")
        complete_item(db, spec.model, item_id)
        return {**entry, "status": "success", "result": resp.data}
    except Exception as e:
        db.rollback()
        error = str(e) or e.__class__.__name__
        updated = record_item_failure(db, spec.model, item_id, error)
        if updated is not None and updated.status == STATUS_FAILED:
            logger.warning(f"[{spec.name}] item {item_id} failed permanently: {error}")
            return {**entry, "status": "failed", "error": error, "retry_count": updated.retry_count}
        logger.info(f"[{spec.name}] item {item_id} will be retried: {error}")
        return {
            **entry,
            "status": "retry",
            "error": error,
            "retry_count": updated.retry_count if updated is not None else None,
        }


async def process_queue(db: Session, spec: QueueSpec) -> dict:
    """One batch of pending items, most urgent first. A failing item never stops the batch."""
    items = fetch_pending_items(db, spec.model, spec.batch_size)
    if not items:
        return {"processed": 0, "message": "No items in queue"}

    results = []
    for item in items:
        item_id = item.id
        try:
            results.append(await process_queue_item(db, spec, item))
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception(f"[{spec.name}] database error on item {item_id}")
            results.append({"id": item_id, "status": "error", "error": str(e)})
    logger.info(f"[{spec.name}] processed {len(results)} queue item(s)")
    return {"processed": len(results), "results": results}

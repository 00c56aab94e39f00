"""Classification and draft queues: priority order, bounded retries, per-item isolation."""
import asyncio
from datetime import timedelta

from app.function_client import FunctionResponse
from app.models import ClassificationQueueItem, DraftQueueItem, utcnow
from app.queue_db import enqueue_classification, enqueue_draft
from app.services.queue_processor import classification_queue, draft_queue, process_queue


def _recording_delegate(calls, fail_for=(), status_code=500):
    async def delegate(payload):
        calls.append(payload)
        if payload.get("ticket_id") in fail_for:
            return FunctionResponse(status_code, {"error": "OpenAI API error: 429"})
        return FunctionResponse(200, {"category": "Repairs"})

    return delegate


def test_empty_queue(db_session):
    result = asyncio.run(process_queue(db_session, classification_queue(delegate=_recording_delegate([]))))
    assert result == {"processed": 0, "message": "No items in queue"}


def test_item_failing_three_times_is_failed(db_session, make_mailbox, make_ticket_email):
    ticket, email = make_ticket_email(make_mailbox())
    item = enqueue_classification(db_session, email.id, ticket.id, max_retries=3)
    spec = classification_queue(delegate=_recording_delegate([], fail_for={ticket.id}))

    statuses = []
    for _ in range(3):
        result = asyncio.run(process_queue(db_session, spec))
        statuses.append(result["results"][0]["status"])

    assert statuses == ["retry", "retry", "failed"]
    db_session.expire_all()
    row = db_session.get(ClassificationQueueItem, item.id)
    assert row.status == "failed"
    assert row.retry_count == 3
    assert "OpenAI API error: 429" in row.error_message
    assert asyncio.run(process_queue(db_session, spec))["processed"] == 0


def test_items_run_most_urgent_first(db_session, make_mailbox, make_ticket_email):
    mailbox = make_mailbox()
    low, low_email = make_ticket_email(mailbox, subject="Newsletter")
    urgent, urgent_email = make_ticket_email(mailbox, subject="Flood")
    enqueue_classification(db_session, low_email.id, low.id, priority=9)
    enqueue_classification(db_session, urgent_email.id, urgent.id, priority=1)
    calls = []

    asyncio.run(process_queue(db_session, classification_queue(delegate=_recording_delegate(calls))))

    assert [c["ticket_id"] for c in calls] == [urgent.id, low.id]
    assert calls[0]["subject"] == "Flood"
    assert calls[0]["body"] == "The boiler stopped working"
    assert calls[0]["from_address"] == "tenant@example.com"


def test_equal_priority_runs_oldest_first(db_session, make_mailbox, make_ticket_email):
    mailbox = make_mailbox()
    first, _ = make_ticket_email(mailbox, subject="First")
    second, _ = make_ticket_email(mailbox, subject="Second")
    older = enqueue_draft(db_session, second.id)
    enqueue_draft(db_session, first.id)
    older.created_at = utcnow() - timedelta(minutes=5)
    db_session.commit()
    calls = []

    asyncio.run(process_queue(db_session, draft_queue(delegate=_recording_delegate(calls))))

    assert calls == [{"ticket_id": second.id}, {"ticket_id": first.id}]


def test_one_failing_item_does_not_stop_the_batch(db_session, make_mailbox, make_ticket_email):
    mailbox = make_mailbox()
    bad, _ = make_ticket_email(mailbox, subject="Bad")
    good, _ = make_ticket_email(mailbox, subject="Good")
    bad_item = enqueue_draft(db_session, bad.id, priority=1)
    good_item = enqueue_draft(db_session, good.id, priority=2)

    async def delegate(payload):
        if payload["ticket_id"] == bad.id:
            raise RuntimeError("connection reset")
        return FunctionResponse(200, {"success": True})

    result = asyncio.run(process_queue(db_session, draft_queue(delegate=delegate)))

    assert result["processed"] == 2
    by_id = {r["id"]: r for r in result["results"]}
    assert by_id[bad_item.id]["status"] == "retry"
    assert by_id[bad_item.id]["error"] == "connection reset"
    assert by_id[good_item.id]["status"] == "success"
    db_session.expire_all()
    assert db_session.get(DraftQueueItem, bad_item.id).status == "pending"
    assert db_session.get(DraftQueueItem, good_item.id).status == "completed"


def test_batch_size_bounds_one_run(db_session, make_mailbox, make_ticket_email, monkeypatch):
    from app.config import settings

    monkeypatch.setattr(settings, "draft_queue_batch_size", 2)
    mailbox = make_mailbox()
    for i in range(3):
        ticket, _ = make_ticket_email(mailbox, subject=f"Ticket {i}")
        enqueue_draft(db_session, ticket.id)

    result = asyncio.run(process_queue(db_session, draft_queue(delegate=_recording_delegate([]))))

    assert result["processed"] == 2
    assert db_session.query(DraftQueueItem).filter(DraftQueueItem.status == "pending").count() == 1


def test_queue_endpoint_requires_auth(client):
    r = client.post("/api/functions/process-classification-queue")
    assert r.status_code == 401
    assert r.json() == {"error": "Missing authorization header"}

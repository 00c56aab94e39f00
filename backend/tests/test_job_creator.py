"""Job creator: one outstanding sync job per active mailbox."""
from unittest.mock import AsyncMock, patch

import pytest

from app.exceptions import NotFoundError
from app.models import SyncJob
from app.services.job_creator import create_sync_jobs
from app.sync_state_db import get_sync_state


def test_creates_one_pending_job_per_active_mailbox(db_session, make_mailbox):
    make_mailbox(name="Lettings", email_address="lettings@example.com")
    make_mailbox(name="Repairs", email_address="repairs@example.com")
    make_mailbox(name="Archive", email_address="archive@example.com", is_active=False)

    result = create_sync_jobs(db_session)

    assert result["success"] is True
    assert len(result["jobs"]) == 2
    assert {j["status"] for j in result["jobs"]} == {"pending"}
    assert db_session.query(SyncJob).count() == 2


def test_second_call_returns_the_same_job(db_session, make_mailbox):
    mailbox = make_mailbox()

    first = create_sync_jobs(db_session, mailbox_id=mailbox.id)
    second = create_sync_jobs(db_session, mailbox_id=mailbox.id)

    assert first["jobs"][0]["id"] == second["jobs"][0]["id"]
    assert db_session.query(SyncJob).filter(SyncJob.mailbox_id == mailbox.id).count() == 1


def test_creates_sync_state_with_zeroed_cursors(db_session, make_mailbox):
    mailbox = make_mailbox()
    create_sync_jobs(db_session, mailbox_id=mailbox.id, batch_size=7)

    state = get_sync_state(db_session, mailbox.id)
    assert state is not None
    assert state.is_syncing is False
    assert state.last_sequence_number == 0
    assert db_session.query(SyncJob).one().batch_size == 7


def test_skips_mailbox_already_syncing(db_session, make_mailbox, make_sync_state):
    busy = make_mailbox(name="Busy", email_address="busy@example.com")
    make_sync_state(busy, is_syncing=True)
    make_mailbox(name="Idle", email_address="idle@example.com")

    result = create_sync_jobs(db_session)

    assert len(result["jobs"]) == 1
    assert "skipped 1" in result["message"]
    assert db_session.query(SyncJob).filter(SyncJob.mailbox_id == busy.id).count() == 0


def test_unknown_or_inactive_mailbox_is_not_found(db_session, make_mailbox):
    inactive = make_mailbox(is_active=False)
    with pytest.raises(NotFoundError) as exc:
        create_sync_jobs(db_session, mailbox_id=inactive.id)
    assert exc.value.message == "Mailbox not found or inactive"

    with pytest.raises(NotFoundError):
        create_sync_jobs(db_session, mailbox_id="does-not-exist")


def test_no_active_mailboxes_is_not_found(db_session):
    with pytest.raises(NotFoundError) as exc:
        create_sync_jobs(db_session)
    assert exc.value.message == "No active mailboxes found"


def test_create_sync_job_endpoint_wakes_worker(client, make_mailbox, anon_headers):
    mailbox = make_mailbox()
    with patch("app.routers.functions.wake_job_worker", new_callable=AsyncMock) as wake:
        r = client.post("/api/functions/create-sync-job", json={"mailbox_id": mailbox.id}, headers=anon_headers)

    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["jobs"][0]["mailbox_id"] == mailbox.id
    assert data["jobs"][0]["progress"]["processed"] == 0
    wake.assert_called_once()


def test_create_sync_job_endpoint_404_for_unknown_mailbox(client, anon_headers):
    with patch("app.routers.functions.wake_job_worker", new_callable=AsyncMock) as wake:
        r = client.post("/api/functions/create-sync-job", json={"mailbox_id": "nope"}, headers=anon_headers)
    assert r.status_code == 404
    assert r.json() == {"error": "Mailbox not found or inactive"}
    wake.assert_not_called()


def test_create_sync_job_endpoint_rejects_bad_batch_size(client, anon_headers):
    r = client.post("/api/functions/create-sync-job", json={"batch_size": 0}, headers=anon_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid request"

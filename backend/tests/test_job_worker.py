"""Job worker: claims pending jobs and delegates them within a count and time budget."""
import asyncio

from app.function_client import FunctionCallError, FunctionResponse
from app.models import SyncJob
from app.services.job_worker import run_job_worker


def _run(db, process_job, **kwargs):
    kwargs.setdefault("pause_s", 0)
    kwargs.setdefault("timeout_s", 30)
    return asyncio.run(run_job_worker(db, process_job=process_job, **kwargs))


def test_stops_when_queue_is_empty(db_session, make_mailbox, make_job):
    jobs = [
        make_job(make_mailbox(name=f"M{i}", email_address=f"m{i}@example.com"), created_ago_s=30 - i)
        for i in range(2)
    ]
    seen = []

    async def process(job_id):
        seen.append(job_id)
        return FunctionResponse(200, {"success": True, "completed": True, "progress": {"processed": 3}})

    result = _run(db_session, process, max_jobs=5)

    assert result["success"] is True
    assert result["jobs_processed"] == 2
    assert seen == [j.id for j in jobs]
    assert [j["status"] for j in result["jobs"]] == ["completed", "completed"]
    assert result["jobs"][0]["progress"] == {"processed": 3}


def test_respects_max_jobs(db_session, make_mailbox, make_job):
    for i in range(3):
        make_job(make_mailbox(name=f"M{i}", email_address=f"m{i}@example.com"))

    async def process(job_id):
        return FunctionResponse(200, {"completed": False})

    result = _run(db_session, process, max_jobs=2)

    assert result["jobs_processed"] == 2
    assert [j["status"] for j in result["jobs"]] == ["pending", "pending"]
    assert db_session.query(SyncJob).filter(SyncJob.status == "pending").count() == 1


def test_stops_when_time_budget_is_spent(db_session, make_mailbox, make_job):
    for i in range(4):
        make_job(make_mailbox(name=f"M{i}", email_address=f"m{i}@example.com"))

    async def slow_process(job_id):
        await asyncio.sleep(0.25)
        return FunctionResponse(200, {"completed": True})

    result = _run(db_session, slow_process, max_jobs=10, timeout_s=0.4)

    assert result["jobs_processed"] == 2
    assert db_session.query(SyncJob).filter(SyncJob.status == "pending").count() == 2


def test_claims_job_before_delegating(db_session, make_mailbox, make_job):
    make_job(make_mailbox())
    statuses = []

    async def process(job_id):
        row = db_session.get(SyncJob, job_id)
        db_session.refresh(row)
        statuses.append(row.status)
        return FunctionResponse(200, {"completed": True})

    _run(db_session, process)
    assert statuses == ["processing"]


def test_reports_failed_and_error_jobs_without_retrying(db_session, make_mailbox, make_job):
    failing = make_job(make_mailbox(name="A", email_address="a@example.com"), created_ago_s=20)
    broken = make_job(make_mailbox(name="B", email_address="b@example.com"), created_ago_s=10)
    calls = []

    async def process(job_id):
        calls.append(job_id)
        if job_id == failing.id:
            return FunctionResponse(500, {"error": "IMAP login failed"})
        raise FunctionCallError("process-sync-job timed out after 45.0s")

    result = _run(db_session, process)

    assert calls == [failing.id, broken.id]
    by_id = {j["job_id"]: j for j in result["jobs"]}
    assert by_id[failing.id]["status"] == "failed"
    assert by_id[failing.id]["error"] == "IMAP login failed"
    assert by_id[broken.id]["status"] == "error"
    assert "timed out" in by_id[broken.id]["error"]


def test_reclaims_stale_jobs_first(db_session, make_mailbox, make_job):
    stale = make_job(make_mailbox(), status="processing", started_ago_s=3600)
    seen = []

    async def process(job_id):
        seen.append(job_id)
        return FunctionResponse(200, {"completed": True})

    result = _run(db_session, process, stale_after_s=600)

    assert result["stale_jobs"]["reset"] == 1
    assert seen == [stale.id]


def test_job_worker_endpoint_with_empty_queue(client, anon_headers):
    r = client.post("/api/functions/job-worker", headers=anon_headers)
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["jobs_processed"] == 0
    assert data["jobs"] == []

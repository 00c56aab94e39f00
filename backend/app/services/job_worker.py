"""Job worker: reclaim stale jobs, then claim and delegate pending jobs within a count and time budget."""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..function_client import FunctionClient, FunctionResponse
from ..sync_jobs_db import claim_next_pending_job, reset_stale_sync_jobs

logger = logging.getLogger(__name__)

ProcessJob = Callable[[str], Awaitable[FunctionResponse]]


def http_job_processor(client: Optional[FunctionClient] = None) -> ProcessJob:
    """Delegate to the process-sync-job endpoint."""
    client = client or FunctionClient()

    async def _process(job_id: str) -> FunctionResponse:
        return await client.call("process-sync-job", {"job_id": job_id})

    return _process


async def run_job_worker(
    db: Session,
    process_job: Optional[ProcessJob] = None,
    max_jobs: Optional[int] = None,
    timeout_s: Optional[float] = None,
    pause_s: Optional[float] = None,
    stale_after_s: Optional[int] = None,
) -> dict:
    """
    Returns {success, jobs_processed, time_elapsed_ms, stale_jobs, jobs}.

    Each job entry is completed|pending (processor answered 2xx), failed
    (non-2xx) or error (no response). The worker never retries a job itself;
    the job row's status decides what a later run picks up.
    """
    process_job = process_job or http_job_processor()
    max_jobs = settings.worker_max_jobs_per_run if max_jobs is None else max_jobs
    timeout_s = settings.worker_timeout_s if timeout_s is None else timeout_s
    pause_s = settings.worker_pause_s if pause_s is None else pause_s
    stale_after_s = settings.sync_job_stale_after_s if stale_after_s is None else stale_after_s

    start = time.monotonic()
    logger.info("Job worker started")

    try:
        stale = reset_stale_sync_jobs(db, stale_after_s)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Stale job sweep failed")
        stale = None

    jobs = []
    jobs_processed = 0
    while jobs_processed < max_jobs and (time.monotonic() - start) < timeout_s:
        try:
            job = claim_next_pending_job(db)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Error fetching pending jobs")
            break
        if job is None:
            logger.info("No more pending jobs")
            break

        job_id = job.id
        logger.info(f"Processing job {job_id} for mailbox {job.mailbox_id}")
        try:
            resp = await process_job(job_id)
        except Exception as e:
            logger.error(f"Error processing job {job_id}: {e}")
            jobs.append({"job_id": job_id, "status": "error", "error": str(e)})
        else:
            if resp.ok:
                completed = bool(resp.data.get("completed"))
                logger.info(f"Job {job_id} processed. Completed: {completed}")
                jobs.append({
                    "job_id": job_id,
                    "status": "completed" if completed else "pending",
                    "progress": resp.data.get("progress"),
                })
            else:
                logger.error(f"Job {job_id} failed: {resp.error}")
                jobs.append({"job_id": job_id, "status": "failed", "error": resp.error})
        jobs_processed += 1

        if pause_s > 0:
            await asyncio.sleep(pause_s)

    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.info(f"Job worker finished. Processed {jobs_processed} jobs in {elapsed_ms}ms")
    return {
        "success": True,
        "jobs_processed": jobs_processed,
        "time_elapsed_ms": elapsed_ms,
        "stale_jobs": stale,
        "jobs": jobs,
    }

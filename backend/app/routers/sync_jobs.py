"""Sync read API: GET a job, GET its progress as SSE until it reaches a terminal status, GET a mailbox's sync state."""
import asyncio
import json
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from ..auth import Caller, get_caller, get_caller_for_sse
from ..database import SessionLocal, get_db, get_sync_db
from ..models import STATUS_COMPLETED, STATUS_FAILED, Mailbox, SyncJob
from ..schemas import SyncJobResponse
from ..sync_jobs_db import get_active_job, get_job, job_to_dict
from ..sync_state_db import get_state_dict

router = APIRouter(prefix="/api", tags=["sync-jobs"])

SSE_POLL_INTERVAL_S = 0.5


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


@router.get("/sync-jobs/{job_id}", response_model=SyncJobResponse)
async def read_sync_job(
    job_id: str,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    result = await db.execute(select(SyncJob).where(SyncJob.id == job_id))
    job = result.scalars().first()
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job_to_dict(job)


async def _sse_generator(job_id: str, session_factory: Callable[[], Session]):
    """Yield the job as SSE events until it is completed or failed."""
    while True:
        session = session_factory()
        try:
            job = get_job(session, job_id)
            state = job_to_dict(job) if job else {"id": job_id, "status": "not_found"}
        finally:
            session.close()
        yield {"data": json.dumps(state)}
        if state["status"] in (STATUS_COMPLETED, STATUS_FAILED, "not_found"):
            break
        await asyncio.sleep(SSE_POLL_INTERVAL_S)


@router.get("/sync-jobs/{job_id}/events")
async def sync_job_events(
    job_id: str,
    caller: Caller = Depends(get_caller_for_sse),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """SSE stream of job progress. Pass ?token= when using EventSource (browser cannot set Authorization header)."""
    return EventSourceResponse(_sse_generator(job_id, session_factory))


@router.get("/mailboxes/{mailbox_id}/sync-state")
def read_sync_state(
    mailbox_id: str,
    db: Session = Depends(get_sync_db),
    caller: Caller = Depends(get_caller),
):
    """Cursors and is_syncing for one mailbox, plus its pending/processing job if any."""
    if db.get(Mailbox, mailbox_id) is None:
        raise HTTPException(status_code=404, detail="Mailbox not found")
    state = get_state_dict(db, mailbox_id)
    active = get_active_job(db, mailbox_id)
    state["active_job"] = job_to_dict(active) if active else None
    return state

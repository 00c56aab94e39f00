"""Function endpoints under /api/functions/<name>: job pipeline, AI queues, mailbox admin, crypto and rate-limit gates."""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..auth import Caller, get_caller, require_admin, require_service_role
from ..database import get_sync_db
from ..function_client import wake_job_worker
from ..schemas import (
    ClassifyEmailRequest,
    CreateSyncJobRequest,
    CreateSyncJobResponse,
    CryptoRequest,
    CryptoResponse,
    GenerateDraftRequest,
    GenerateTemplateRequest,
    JobWorkerResponse,
    ProcessSyncJobRequest,
    RateLimitRequest,
    UpdateMailboxRequest,
)
from ..services.classification_service import classify_and_store
from ..services.credential_service import run_crypto_operation
from ..services.draft_service import generate_ticket_draft
from ..services.job_creator import create_sync_jobs
from ..services.job_worker import run_job_worker
from ..services.mailbox_service import save_mailbox
from ..services.queue_processor import classification_queue, draft_queue, process_queue
from ..services.rate_limit_service import evaluate_rate_limit
from ..services.sync_processor import process_sync_job
from ..template_generator import generate_template

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/functions", tags=["functions"])


@router.post("/create-sync-job", response_model=CreateSyncJobResponse)
def create_sync_job(
    background_tasks: BackgroundTasks,
    payload: Optional[CreateSyncJobRequest] = None,
    db: Session = Depends(get_sync_db),
    caller: Caller = Depends(get_caller),
):
    """Queue one sync job per active mailbox (or the given one), then nudge the worker."""
    payload = payload or CreateSyncJobRequest()
    result = create_sync_jobs(
        db,
        mailbox_id=payload.mailbox_id,
        batch_size=payload.batch_size,
        job_type=payload.job_type,
    )
    if result["jobs"]:
        background_tasks.add_task(wake_job_worker)
    return result


@router.post("/job-worker", response_model=JobWorkerResponse)
async def job_worker(
    db: Session = Depends(get_sync_db),
    caller: Caller = Depends(get_caller),
):
    return await run_job_worker(db)


@router.post("/process-sync-job")
async def process_sync_job_endpoint(
    payload: Optional[ProcessSyncJobRequest] = None,
    db: Session = Depends(get_sync_db),
    caller: Caller = Depends(require_service_role),
):
    return await process_sync_job(db, payload.job_id if payload else None)


@router.post("/process-classification-queue")
async def process_classification_queue(
    db: Session = Depends(get_sync_db),
    caller: Caller = Depends(get_caller),
):
    return await process_queue(db, classification_queue())


@router.post("/process-draft-queue")
async def process_draft_queue(
    db: Session = Depends(get_sync_db),
    caller: Caller = Depends(get_caller),
):
    return await process_queue(db, draft_queue())


@router.post("/classify-email")
def classify_email(
    payload: ClassifyEmailRequest,
    db: Session = Depends(get_sync_db),
    caller: Caller = Depends(require_service_role),
):
    return classify_and_store(
        db,
        email_id=payload.email_id,
        ticket_id=payload.ticket_id,
        subject=payload.subject,
        body=payload.body,
        from_address=payload.from_address,
        from_name=payload.from_name,
    )


@router.post("/auto-generate-draft")
def auto_generate_draft(
    payload: GenerateDraftRequest,
    db: Session = Depends(get_sync_db),
    caller: Caller = Depends(require_service_role),
):
    return generate_ticket_draft(db, payload.ticket_id)


@router.post("/crypto-credentials", response_model=CryptoResponse)
def crypto_credentials(
    payload: CryptoRequest,
    db: Session = Depends(get_sync_db),
    caller: Caller = Depends(get_caller),
):
    return run_crypto_operation(
        db,
        operation=payload.operation,
        data=payload.data,
        mailbox_id=payload.mailbox_id,
        user_id=caller.user_id,
    )


@router.post("/generate-template")
def generate_template_endpoint(
    payload: GenerateTemplateRequest,
    caller: Caller = Depends(get_caller),
):
    if not payload.prompt or not payload.prompt.strip():
        raise HTTPException(status_code=400, detail="prompt is required")
    return generate_template(payload.prompt.strip())


@router.post("/update-mailbox-credentials")
def update_mailbox_credentials(
    payload: UpdateMailboxRequest,
    db: Session = Depends(get_sync_db),
    caller: Caller = Depends(require_admin),
):
    """Admin only: create or update a mailbox; a new password is stored encrypted."""
    return save_mailbox(
        db,
        name=payload.name,
        email_address=payload.email_address,
        mailbox_id=payload.mailbox_id,
        imap_host=payload.imap_host,
        imap_port=payload.imap_port,
        username=payload.username,
        password=payload.password,
        signature=payload.signature,
        tone=payload.tone,
        user_id=caller.user_id,
    )


def _client_ip(request: Request) -> str:
    """Originating client: first hop of X-Forwarded-For, then X-Real-IP, then the socket peer."""
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    return (
        forwarded
        or request.headers.get("x-real-ip")
        or (request.client.host if request.client else None)
        or "unknown"
    )


@router.post("/check-rate-limit")
def check_rate_limit(
    payload: RateLimitRequest,
    request: Request,
    db: Session = Depends(get_sync_db),
    caller: Caller = Depends(get_caller),
):
    if not payload.identifier or not payload.action:
        raise HTTPException(status_code=400, detail="identifier and action are required")
    decision = evaluate_rate_limit(
        db,
        payload.identifier,
        payload.action,
        metadata=payload.metadata,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent") or "unknown",
    )
    return JSONResponse(status_code=decision.status_code, content=decision.body, headers=decision.headers)

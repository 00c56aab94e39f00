"""Pydantic schemas for API."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CreateSyncJobRequest(BaseModel):
    mailbox_id: Optional[str] = None
    batch_size: Optional[int] = Field(None, ge=1, le=500)
    job_type: Optional[str] = None


class SyncJobProgress(BaseModel):
    processed: int = 0
    total: int = 0
    synced: int = 0
    skipped: int = 0
    errors: int = 0


class SyncJobResponse(BaseModel):
    id: str
    mailbox_id: str
    status: str
    job_type: str
    batch_size: int
    progress: SyncJobProgress
    retry_count: int = 0
    max_retries: int = 3
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class CreateSyncJobResponse(BaseModel):
    success: bool
    jobs: List[SyncJobResponse]
    message: str


class WorkerJobResult(BaseModel):
    job_id: str
    status: str  # completed, pending, failed, error
    progress: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class JobWorkerResponse(BaseModel):
    success: bool
    jobs_processed: int
    time_elapsed_ms: int
    stale_jobs: Optional[Dict[str, int]] = None
    jobs: List[WorkerJobResult]


class ProcessSyncJobRequest(BaseModel):
    job_id: Optional[str] = None


class ClassifyEmailRequest(BaseModel):
    email_id: Optional[str] = None
    ticket_id: Optional[str] = None
    subject: str = ""
    body: str = ""
    from_address: str = ""
    from_name: str = ""


class GenerateDraftRequest(BaseModel):
    ticket_id: Optional[str] = None


class CryptoRequest(BaseModel):
    operation: Optional[str] = None
    data: Optional[str] = None
    mailbox_id: Optional[str] = Field(None, alias="mailboxId")

    class Config:
        populate_by_name = True


class CryptoResponse(BaseModel):
    result: str
    version: int


class RateLimitRequest(BaseModel):
    identifier: Optional[str] = None
    action: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UpdateMailboxRequest(BaseModel):
    mailbox_id: Optional[str] = Field(None, alias="mailboxId")
    name: Optional[str] = None
    email_address: Optional[str] = None
    imap_host: Optional[str] = None
    imap_port: Optional[int] = Field(None, ge=1, le=65535)
    username: Optional[str] = None
    password: Optional[str] = None
    signature: Optional[str] = None
    tone: Optional[str] = None

    class Config:
        populate_by_name = True


class GenerateTemplateRequest(BaseModel):
    prompt: Optional[str] = None

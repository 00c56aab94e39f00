"""Process one bounded batch of a mailbox sync job.

Newest messages first; `progress.processed` is the offset into the
newest-first sequence list, so each call resumes where the last one stopped.
Every message is threaded onto a ticket and stored once per message-id.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..credential_crypto import CredentialCipher, is_usable_password
from ..exceptions import ConflictError, InvalidRequestError, NotFoundError, ServiceError
from ..mail_client import ImapMailFetcher, MailFetcher
from ..mail_parser import ParsedMessage, parse_message, strip_reply_prefix
from ..models import ACTIVE_JOB_STATUSES, STATUS_PENDING, Email, Mailbox, SyncJob, Ticket, empty_progress, utcnow
from ..queue_db import enqueue_classification, enqueue_draft
from ..sync_jobs_db import claim_job, complete_job, fail_job, get_job, record_job_failure, requeue_job
from ..sync_state_db import set_batch_finished, set_sync_error, set_sync_finished, set_syncing

logger = logging.getLogger(__name__)

NO_SUBJECT = "(No subject)"
UNKNOWN_SENDER = "unknown@unknown.com"

FetcherFactory = Callable[[Mailbox, str], MailFetcher]


def imap_fetcher_factory(mailbox: Mailbox, password: str) -> MailFetcher:
    return ImapMailFetcher(
        host=mailbox.imap_host,
        port=mailbox.imap_port or 993,
        username=mailbox.username or mailbox.email_address,
        password=password,
        timeout=settings.imap_connect_timeout_s,
    )


@dataclass
class BatchResult:
    synced: int = 0
    skipped: int = 0
    errors: int = 0
    completed: bool = False
    total: int = 0
    last_sequence_number: int = 0

    @property
    def attempted(self) -> int:
        return self.synced + self.skipped + self.errors


def resolve_mailbox_password(mailbox: Mailbox, cipher: Optional[CredentialCipher] = None) -> Optional[str]:
    """Decrypted secure credential if present, else the legacy column (placeholders count as missing)."""
    if mailbox.encrypted_password_secure:
        password = (cipher or CredentialCipher.from_settings()).decrypt(mailbox.encrypted_password_secure)
    else:
        password = mailbox.encrypted_password
    return password if is_usable_password(password) else None


def _ticket_for_message_id(db: Session, mailbox_id: str, message_id: str) -> Optional[str]:
    row = (
        db.query(Email.ticket_id)
        .filter(Email.mailbox_id == mailbox_id, Email.message_id == message_id)
        .first()
    )
    return row[0] if row else None


def find_thread_ticket(db: Session, mailbox: Mailbox, parsed: ParsedMessage) -> Optional[str]:
    """In-Reply-To, then References, then the subject without reply prefixes."""
    if parsed.in_reply_to:
        ticket_id = _ticket_for_message_id(db, mailbox.id, parsed.in_reply_to)
        if ticket_id:
            return ticket_id
    for ref in parsed.references:
        ticket_id = _ticket_for_message_id(db, mailbox.id, ref)
        if ticket_id:
            return ticket_id
    subject = strip_reply_prefix(parsed.subject)
    if subject:
        row = (
            db.query(Ticket.id)
            .filter(Ticket.mailbox_id == mailbox.id, Ticket.subject == subject)
            .order_by(Ticket.created_at.desc())
            .first()
        )
        if row:
            return row[0]
    return None


def _is_outbound(mailbox: Mailbox, parsed: ParsedMessage) -> bool:
    return bool(parsed.from_address) and parsed.from_address.lower() == (mailbox.email_address or "").lower()


def store_message(db: Session, mailbox: Mailbox, raw: bytes, sequence_number: int) -> str:
    """Thread and insert one message. Returns "synced" or "skipped" (already stored)."""
    parsed = parse_message(raw, fallback_message_id=f"seq-{sequence_number}-{mailbox.id}")
    if _ticket_for_message_id(db, mailbox.id, parsed.message_id):
        return "skipped"

    received_at = parsed.received_at or utcnow()
    outbound = _is_outbound(mailbox, parsed)
    ticket_id = find_thread_ticket(db, mailbox, parsed)
    new_ticket = ticket_id is None
    if new_ticket:
        sender = parsed.from_address or UNKNOWN_SENDER
        ticket = Ticket(
            mailbox_id=mailbox.id,
            subject=strip_reply_prefix(parsed.subject) or NO_SUBJECT,
            contact_email=(parsed.to_addresses[0] if parsed.to_addresses else sender) if outbound else sender,
            contact_name="" if outbound else parsed.from_name,
            status="open",
            last_message_at=received_at,
            created_at=utcnow(),
        )
        db.add(ticket)
        db.flush()
        ticket_id = ticket.id

    email = Email(
        ticket_id=ticket_id,
        mailbox_id=mailbox.id,
        message_id=parsed.message_id,
        in_reply_to=parsed.in_reply_to,
        references_header=" ".join(parsed.references) or None,
        from_address=parsed.from_address,
        from_name=parsed.from_name,
        to_addresses=parsed.to_addresses,
        cc_addresses=parsed.cc_addresses,
        subject=parsed.subject,
        body_text=parsed.body_text or None,
        body_html=parsed.body_html or None,
        direction="outbound" if outbound else "inbound",
        received_at=received_at,
        created_at=utcnow(),
    )
    db.add(email)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        return "skipped"

    if not new_ticket:
        ticket = db.get(Ticket, ticket_id)
        if ticket is not None and (ticket.last_message_at is None or ticket.last_message_at < received_at):
            ticket.last_message_at = received_at
            ticket.updated_at = utcnow()

    if not outbound and settings.auto_classify_new_emails:
        enqueue_classification(db, email.id, ticket_id, commit=False)
    if new_ticket and settings.auto_draft_new_tickets:
        enqueue_draft(db, ticket_id, commit=False)
    db.commit()
    return "synced"


async def run_batch(db: Session, job: SyncJob, mailbox: Mailbox, fetcher: MailFetcher) -> BatchResult:
    start = time.monotonic()
    batch_size = min(job.batch_size or settings.sync_default_batch_size, settings.sync_max_batch_size)
    offset = (job.progress or {}).get("processed", 0) or 0
    result = BatchResult()

    await fetcher.open()
    try:
        sequence_numbers = sorted(await fetcher.list_sequence_numbers("INBOX"), reverse=True)
        result.total = len(sequence_numbers)
        result.last_sequence_number = sequence_numbers[0] if sequence_numbers else 0
        window = sequence_numbers[offset:offset + batch_size]
        if not window:
            result.completed = True
            return result

        logger.info(f"[{mailbox.name}] Processing batch: {len(window)} emails (offset: {offset})")
        for seq in window:
            if time.monotonic() - start > settings.sync_execution_timeout_s:
                logger.info(f"[{mailbox.name}] Timeout approaching, stopping batch")
                break
            try:
                raw = await fetcher.fetch(seq)
                if not raw:
                    result.errors += 1
                    continue
                outcome = store_message(db, mailbox, raw, seq)
            except Exception as e:
                db.rollback()
                result.errors += 1
                logger.error(f"[{mailbox.name}] Error processing seq {seq}: {e}")
                continue
            if outcome == "skipped":
                result.skipped += 1
            else:
                result.synced += 1

        result.completed = offset + result.attempted >= len(sequence_numbers)
        return result
    finally:
        await fetcher.close()


def _fail_setup(db: Session, job: SyncJob, message: str):
    fail_job(db, job, message)
    set_syncing(db, job.mailbox_id, False)


async def process_sync_job(
    db: Session,
    job_id: Optional[str],
    fetcher_factory: Optional[FetcherFactory] = None,
    cipher: Optional[CredentialCipher] = None,
) -> dict:
    """Returns {success, job_id, completed, progress}; raises ServiceError subclasses."""
    if not job_id:
        raise InvalidRequestError("job_id is required")
    job = get_job(db, job_id)
    if job is None:
        raise NotFoundError("Job not found")
    if job.status not in ACTIVE_JOB_STATUSES:
        raise InvalidRequestError("Job is not in processable state", details={"status": job.status})
    if job.status == STATUS_PENDING:
        if not claim_job(db, job.id):
            raise ConflictError("Job was claimed by another worker")
        db.refresh(job)

    fetcher_factory = fetcher_factory or imap_fetcher_factory
    mailbox_id = job.mailbox_id
    try:
        set_syncing(db, mailbox_id, True)
        mailbox = db.get(Mailbox, mailbox_id)
        if mailbox is None:
            _fail_setup(db, job, "Mailbox not found")
            raise NotFoundError("Mailbox not found")
        password = resolve_mailbox_password(mailbox, cipher)
        if not password:
            _fail_setup(db, job, "No password configured")
            raise InvalidRequestError("No password configured for mailbox")

        batch = await run_batch(db, job, mailbox, fetcher_factory(mailbox, password))

        current = {**empty_progress(), **(job.progress or {})}
        progress = {
            "processed": current["processed"] + batch.attempted,
            "total": batch.total,
            "synced": current["synced"] + batch.synced,
            "skipped": current["skipped"] + batch.skipped,
            "errors": current["errors"] + batch.errors,
        }
        if batch.completed:
            complete_job(db, job, progress)
            set_sync_finished(db, mailbox_id, batch.last_sequence_number, batch.synced)
            logger.info(
                f"[{mailbox.name}] Job completed: {progress['synced']} synced, "
                f"{progress['skipped']} skipped, {progress['errors']} errors"
            )
        else:
            requeue_job(db, job, progress)
            set_batch_finished(db, mailbox_id, batch.synced)
            logger.info(f"[{mailbox.name}] Batch processed: {batch.synced} synced, more remaining")
        return {"success": True, "job_id": job.id, "completed": batch.completed, "progress": progress}
    except ServiceError:
        raise
    except Exception as e:
        logger.exception(f"Error processing sync job {job_id}")
        db.rollback()
        job = get_job(db, job_id)
        status = record_job_failure(db, job, str(e)) if job is not None else None
        set_sync_error(db, mailbox_id, str(e))
        raise ServiceError(str(e) or e.__class__.__name__, details={"job_status": status}) from e

"""SQLAlchemy models."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Text,
    Float,
    Boolean,
    ForeignKey,
    Index,
    JSON,
    text,
)
from sqlalchemy.orm import declarative_base, declared_attr

Base = declarative_base()

# Job / queue item statuses
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
ACTIVE_JOB_STATUSES = (STATUS_PENDING, STATUS_PROCESSING)


def utcnow() -> datetime:
    """Naive UTC timestamp (columns are stored without time zone)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def empty_progress() -> dict:
    return {"processed": 0, "total": 0, "synced": 0, "skipped": 0, "errors": 0}


class Mailbox(Base):
    __tablename__ = "mailboxes"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    email_address = Column(String, nullable=False, index=True)
    imap_host = Column(String, nullable=True)
    imap_port = Column(Integer, default=993)
    username = Column(String, nullable=True)
    # Legacy column: may still hold an unencrypted password or a placeholder
    encrypted_password = Column(Text, nullable=True)
    # AES-GCM token produced by the credential crypto gate
    encrypted_password_secure = Column(Text, nullable=True)
    encryption_version = Column(Integer, nullable=True)
    encrypted_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    tone = Column(String, default="professional")  # formal, friendly, professional
    signature = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Profile(Base):
    """Application user; id matches the JWT subject."""
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)
    email = Column(String, nullable=True, index=True)
    full_name = Column(String, nullable=True)
    role = Column(String(20), default="agent", nullable=False)  # admin, agent
    created_at = Column(DateTime, default=utcnow)


class SyncState(Base):
    """Per-mailbox sync cursors and the is_syncing guard."""
    __tablename__ = "sync_state"

    id = Column(Integer, primary_key=True, index=True)
    mailbox_id = Column(String(36), ForeignKey("mailboxes.id", ondelete="CASCADE"), unique=True, nullable=False)
    last_sequence_number = Column(Integer, default=0, nullable=False)
    last_uid = Column(Integer, default=0, nullable=False)
    total_emails_synced = Column(Integer, default=0, nullable=False)
    is_syncing = Column(Boolean, default=False, nullable=False)
    last_synced_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class SyncJob(Base):
    """One resumable mailbox sync; processed a batch at a time by the job worker."""
    __tablename__ = "sync_jobs"

    id = Column(String(36), primary_key=True, default=new_id)
    mailbox_id = Column(String(36), ForeignKey("mailboxes.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), default=STATUS_PENDING, nullable=False)  # pending, processing, completed, failed
    job_type = Column(String(50), default="incremental_sync", nullable=False)
    batch_size = Column(Integer, default=20, nullable=False)
    progress = Column(JSON, default=empty_progress)
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(String(36), primary_key=True, default=new_id)
    mailbox_id = Column(String(36), ForeignKey("mailboxes.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    subject = Column(String, nullable=False)
    contact_email = Column(String, nullable=False, index=True)
    contact_name = Column(String, nullable=True)
    status = Column(String, nullable=True)  # open, pending, closed
    priority = Column(String, nullable=True)  # low, medium, high, urgent
    last_message_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Email(Base):
    __tablename__ = "emails"

    id = Column(String(36), primary_key=True, default=new_id)
    ticket_id = Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    mailbox_id = Column(String(36), ForeignKey("mailboxes.id", ondelete="CASCADE"), nullable=False)
    message_id = Column(String, nullable=False)
    in_reply_to = Column(String, nullable=True, index=True)
    references_header = Column(Text, nullable=True)
    from_address = Column(String, default="")
    from_name = Column(String, default="")
    to_addresses = Column(JSON, nullable=True)
    cc_addresses = Column(JSON, nullable=True)
    subject = Column(String, nullable=True)
    body_text = Column(Text, nullable=True)
    body_html = Column(Text, nullable=True)
    direction = Column(String(10), default="inbound")  # inbound, outbound
    received_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    keywords = Column(JSON, nullable=True)  # list of strings


class EmailTemplate(Base):
    __tablename__ = "email_templates"

    id = Column(String(36), primary_key=True, default=new_id)
    category_id = Column(String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String, nullable=False)
    subject = Column(String, nullable=True)
    body = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class Draft(Base):
    __tablename__ = "drafts"

    id = Column(String(36), primary_key=True, default=new_id)
    ticket_id = Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), unique=True, nullable=False)
    subject = Column(String, nullable=True)
    body = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class AiClassification(Base):
    """Persisted LLM (or fallback) classification of one email."""
    __tablename__ = "ai_classifications"

    id = Column(String(36), primary_key=True, default=new_id)
    email_id = Column(String(36), ForeignKey("emails.id", ondelete="CASCADE"), nullable=True, index=True)
    ticket_id = Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=True, index=True)
    category = Column(String, nullable=True)
    subcategory = Column(String, nullable=True)
    priority = Column(String, nullable=True)
    intent = Column(String, nullable=True)
    sentiment = Column(String, nullable=True)
    entities = Column(JSON, nullable=True)
    recommended_actions = Column(JSON, nullable=True)
    suggested_assignee = Column(String, nullable=True)
    confidence = Column(Float, nullable=True)
    raw_response = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class ClassificationCache(Base):
    """Cache for LLM classification keyed by content hash."""
    __tablename__ = "classification_cache"

    id = Column(Integer, primary_key=True, index=True)
    content_hash = Column(String(64), unique=True, index=True, nullable=False)
    raw_json = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class QueueItemMixin:
    """Columns shared by the AI enrichment queues (claim -> attempt -> retry or fail)."""

    id = Column(String(36), primary_key=True, default=new_id)
    status = Column(String(20), default=STATUS_PENDING, nullable=False)
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)
    priority = Column(Integer, default=5, nullable=False)  # lower is more urgent
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    @declared_attr
    def ticket_id(cls):
        return Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)


class ClassificationQueueItem(QueueItemMixin, Base):
    __tablename__ = "classification_queue"

    email_id = Column(String(36), ForeignKey("emails.id", ondelete="CASCADE"), nullable=False, index=True)


class DraftQueueItem(QueueItemMixin, Base):
    __tablename__ = "draft_generation_queue"


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), nullable=True, index=True)
    action = Column(String(64), nullable=False)
    resource_type = Column(String(64), nullable=True)
    resource_id = Column(String(36), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class RateLimitAttempt(Base):
    __tablename__ = "rate_limit_attempts"

    id = Column(Integer, primary_key=True, index=True)
    identifier = Column(String(255), nullable=False)
    action = Column(String(64), nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# At most one pending/processing job per mailbox, enforced by the database.
Index(
    "ux_sync_jobs_active_mailbox",
    SyncJob.mailbox_id,
    unique=True,
    sqlite_where=text("status IN ('pending', 'processing')"),
    postgresql_where=text("status IN ('pending', 'processing')"),
)
Index("ix_sync_jobs_status_created_at", SyncJob.status, SyncJob.created_at)
Index("ix_emails_mailbox_message_id", Email.mailbox_id, Email.message_id, unique=True)
Index("ix_classification_queue_status_priority", ClassificationQueueItem.status, ClassificationQueueItem.priority, ClassificationQueueItem.created_at)
Index("ix_draft_queue_status_priority", DraftQueueItem.status, DraftQueueItem.priority, DraftQueueItem.created_at)
Index("ix_rate_limit_identifier_action_created", RateLimitAttempt.identifier, RateLimitAttempt.action, RateLimitAttempt.created_at)

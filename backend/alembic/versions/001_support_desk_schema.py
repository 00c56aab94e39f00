"""Support desk schema: mailboxes, tickets, emails, sync jobs, AI queues, audit log, rate limits.

Revision ID: 001_support_desk
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_support_desk"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_JOB_WHERE = "status IN ('pending', 'processing')"


def upgrade() -> None:
    op.create_table(
        "mailboxes",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email_address", sa.String(), nullable=False),
        sa.Column("imap_host", sa.String(), nullable=True),
        sa.Column("imap_port", sa.Integer(), nullable=True),
        sa.Column("username", sa.String(), nullable=True),
        sa.Column("encrypted_password", sa.Text(), nullable=True),
        sa.Column("encrypted_password_secure", sa.Text(), nullable=True),
        sa.Column("encryption_version", sa.Integer(), nullable=True),
        sa.Column("encrypted_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("tone", sa.String(), nullable=True),
        sa.Column("signature", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_mailboxes_email_address"), "mailboxes", ["email_address"], unique=False)

    op.create_table(
        "sync_state",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("mailbox_id", sa.String(36), nullable=False),
        sa.Column("last_sequence_number", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_uid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_emails_synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_syncing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["mailbox_id"], ["mailboxes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("mailbox_id"),
    )
    op.create_index(op.f("ix_sync_state_id"), "sync_state", ["id"], unique=False)

    op.create_table(
        "sync_jobs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("mailbox_id", sa.String(36), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("job_type", sa.String(50), nullable=False, server_default="incremental_sync"),
        sa.Column("batch_size", sa.Integer(), nullable=False, server_default="20"),
        sa.Column("progress", sa.JSON(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["mailbox_id"], ["mailboxes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_sync_jobs_mailbox_id"), "sync_jobs", ["mailbox_id"], unique=False)
    op.create_index("ix_sync_jobs_status_created_at", "sync_jobs", ["status", "created_at"], unique=False)
    op.create_index(
        "ux_sync_jobs_active_mailbox",
        "sync_jobs",
        ["mailbox_id"],
        unique=True,
        sqlite_where=sa.text(ACTIVE_JOB_WHERE),
        postgresql_where=sa.text(ACTIVE_JOB_WHERE),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("keywords", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("mailbox_id", sa.String(36), nullable=False),
        sa.Column("category_id", sa.String(36), nullable=True),
        sa.Column("subject", sa.String(), nullable=False),
        sa.Column("contact_email", sa.String(), nullable=False),
        sa.Column("contact_name", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("priority", sa.String(), nullable=True),
        sa.Column("last_message_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["mailbox_id"], ["mailboxes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_tickets_mailbox_id"), "tickets", ["mailbox_id"], unique=False)
    op.create_index(op.f("ix_tickets_contact_email"), "tickets", ["contact_email"], unique=False)

    op.create_table(
        "emails",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("ticket_id", sa.String(36), nullable=False),
        sa.Column("mailbox_id", sa.String(36), nullable=False),
        sa.Column("message_id", sa.String(), nullable=False),
        sa.Column("in_reply_to", sa.String(), nullable=True),
        sa.Column("references_header", sa.Text(), nullable=True),
        sa.Column("from_address", sa.String(), nullable=True),
        sa.Column("from_name", sa.String(), nullable=True),
        sa.Column("to_addresses", sa.JSON(), nullable=True),
        sa.Column("cc_addresses", sa.JSON(), nullable=True),
        sa.Column("subject", sa.String(), nullable=True),
        sa.Column("body_text", sa.Text(), nullable=True),
        sa.Column("body_html", sa.Text(), nullable=True),
        sa.Column("direction", sa.String(10), nullable=True),
        sa.Column("received_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["mailbox_id"], ["mailboxes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_emails_ticket_id"), "emails", ["ticket_id"], unique=False)
    op.create_index(op.f("ix_emails_in_reply_to"), "emails", ["in_reply_to"], unique=False)
    op.create_index("ix_emails_mailbox_message_id", "emails", ["mailbox_id", "message_id"], unique=True)

    op.create_table(
        "email_templates",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("category_id", sa.String(36), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_email_templates_category_id"), "email_templates", ["category_id"], unique=False)

    op.create_table(
        "drafts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("ticket_id", sa.String(36), nullable=False),
        sa.Column("subject", sa.String(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("ticket_id"),
    )

    op.create_table(
        "ai_classifications",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("email_id", sa.String(36), nullable=True),
        sa.Column("ticket_id", sa.String(36), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("subcategory", sa.String(), nullable=True),
        sa.Column("priority", sa.String(), nullable=True),
        sa.Column("intent", sa.String(), nullable=True),
        sa.Column("sentiment", sa.String(), nullable=True),
        sa.Column("entities", sa.JSON(), nullable=True),
        sa.Column("recommended_actions", sa.JSON(), nullable=True),
        sa.Column("suggested_assignee", sa.String(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("raw_response", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["email_id"], ["emails.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_ai_classifications_email_id"), "ai_classifications", ["email_id"], unique=False)
    op.create_index(op.f("ix_ai_classifications_ticket_id"), "ai_classifications", ["ticket_id"], unique=False)

    op.create_table(
        "classification_cache",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("raw_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_classification_cache_id"), "classification_cache", ["id"], unique=False)
    op.create_index(op.f("ix_classification_cache_content_hash"), "classification_cache", ["content_hash"], unique=True)

    for table, extra_columns in (
        ("classification_queue", [sa.Column("email_id", sa.String(36), nullable=False)]),
        ("draft_generation_queue", []),
    ):
        fks = [sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE")]
        if extra_columns:
            fks.append(sa.ForeignKeyConstraint(["email_id"], ["emails.id"], ondelete="CASCADE"))
        op.create_table(
            table,
            sa.Column("id", sa.String(36), nullable=False),
            sa.Column("ticket_id", sa.String(36), nullable=False),
            *extra_columns,
            sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
            sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
            sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("started_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            *fks,
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(op.f(f"ix_{table}_ticket_id"), table, ["ticket_id"], unique=False)
    op.create_index(op.f("ix_classification_queue_email_id"), "classification_queue", ["email_id"], unique=False)
    op.create_index(
        "ix_classification_queue_status_priority",
        "classification_queue",
        ["status", "priority", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_draft_queue_status_priority",
        "draft_generation_queue",
        ["status", "priority", "created_at"],
        unique=False,
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("resource_type", sa.String(64), nullable=True),
        sa.Column("resource_id", sa.String(36), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_log_id"), "audit_log", ["id"], unique=False)
    op.create_index(op.f("ix_audit_log_user_id"), "audit_log", ["user_id"], unique=False)

    op.create_table(
        "rate_limit_attempts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("identifier", sa.String(255), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_rate_limit_attempts_id"), "rate_limit_attempts", ["id"], unique=False)
    op.create_index(
        "ix_rate_limit_identifier_action_created",
        "rate_limit_attempts",
        ["identifier", "action", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("rate_limit_attempts")
    op.drop_table("audit_log")
    op.drop_table("draft_generation_queue")
    op.drop_table("classification_queue")
    op.drop_table("classification_cache")
    op.drop_table("ai_classifications")
    op.drop_table("drafts")
    op.drop_table("email_templates")
    op.drop_table("emails")
    op.drop_table("tickets")
    op.drop_table("categories")
    op.drop_table("sync_jobs")
    op.drop_table("sync_state")
    op.drop_table("mailboxes")

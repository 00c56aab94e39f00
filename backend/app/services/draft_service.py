"""Gather ticket context, generate a reply draft and upsert the ticket's single Draft."""
import logging
from typing import List

from sqlalchemy.orm import Session

from ..config import settings
from ..draft_generator import (
    ConversationMessage,
    DraftContext,
    PastTicket,
    TemplateHint,
    generate_draft,
)
from ..exceptions import NotFoundError
from ..models import Draft, Email, EmailTemplate, Mailbox, Ticket, utcnow

logger = logging.getLogger(__name__)

CONTACT_HISTORY_LIMIT = 3
SIMILAR_TICKETS_LIMIT = 10
TEMPLATES_LIMIT = 3


def _emails(db: Session, ticket_id: str) -> List[Email]:
    return (
        db.query(Email)
        .filter(Email.ticket_id == ticket_id)
        .order_by(Email.received_at.asc(), Email.created_at.asc())
        .all()
    )


def _outbound_reply(db: Session, ticket_id: str, last: bool) -> str:
    replies = [e for e in _emails(db, ticket_id) if e.direction == "outbound"]
    if not replies:
        return ""
    return (replies[-1] if last else replies[0]).body_text or ""


def build_context(db: Session, ticket: Ticket, emails: List[Email]) -> DraftContext:
    closed = db.query(Ticket).filter(Ticket.status == "closed", Ticket.id != ticket.id)
    history = (
        closed.filter(Ticket.contact_email == ticket.contact_email)
        .order_by(Ticket.created_at.desc())
        .limit(CONTACT_HISTORY_LIMIT)
        .all()
    )
    similar = (
        closed.filter(Ticket.mailbox_id == ticket.mailbox_id)
        .order_by(Ticket.created_at.desc())
        .limit(SIMILAR_TICKETS_LIMIT)
        .all()
    )
    templates = []
    if ticket.category_id:
        templates = (
            db.query(EmailTemplate)
            .filter(EmailTemplate.category_id == ticket.category_id, EmailTemplate.is_active.is_(True))
            .limit(TEMPLATES_LIMIT)
            .all()
        )
    mailbox = db.get(Mailbox, ticket.mailbox_id)
    return DraftContext(
        subject=ticket.subject,
        contact_email=ticket.contact_email,
        contact_name=ticket.contact_name,
        conversation=[
            ConversationMessage(
                direction=e.direction,
                body_text=e.body_text or "",
                received_at=e.received_at.isoformat() if e.received_at else None,
            )
            for e in emails
        ],
        contact_history=[PastTicket(t.subject, _outbound_reply(db, t.id, last=True) or None) for t in history],
        similar_tickets=[PastTicket(t.subject, _outbound_reply(db, t.id, last=False) or None) for t in similar],
        templates=[TemplateHint(t.name, t.description, t.body) for t in templates],
        tone=mailbox.tone if mailbox else None,
        signature=mailbox.signature if mailbox else None,
    )


def upsert_draft(db: Session, ticket_id: str, draft: dict) -> Draft:
    row = db.query(Draft).filter(Draft.ticket_id == ticket_id).first()
    now = utcnow()
    if row:
        row.subject = draft["subject"]
        row.body = draft["body"]
        row.notes = draft.get("notes") or ""
        row.updated_at = now
    else:
        row = Draft(
            ticket_id=ticket_id,
            subject=draft["subject"],
            body=draft["body"],
            notes=draft.get("notes") or "",
            created_at=now,
            updated_at=now,
        )
        db.add(row)
    db.commit()
    return row


def generate_ticket_draft(db: Session, ticket_id: str) -> dict:
    if not settings.openai_api_key:
        logger.info("No OpenAI API key - skipping auto-draft generation")
        return {"success": False, "reason": "No OpenAI API key"}
    ticket = db.get(Ticket, ticket_id) if ticket_id else None
    if ticket is None:
        raise NotFoundError("Ticket not found")
    emails = _emails(db, ticket.id)
    if not any(e.direction == "inbound" for e in emails):
        return {"success": False, "reason": "No inbound emails"}
    draft = generate_draft(build_context(db, ticket, emails))
    upsert_draft(db, ticket.id, draft)
    logger.info(f"Draft generated for ticket {ticket.id}")
    return {"success": True, "draft": draft}

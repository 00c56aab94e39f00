"""Draft generation: context gathering, prompt, upsert and the auto-generate-draft endpoint."""
import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from app.config import settings
from app.draft_generator import DraftContext, PastTicket, build_draft_prompt
from app.exceptions import NotFoundError
from app.models import Draft, Email, EmailTemplate, Category, utcnow
from app.services.draft_service import build_context, generate_ticket_draft


@pytest.fixture
def openai_draft(monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", "test-key")
    client = MagicMock()
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=json.dumps({
            "subject": "Re: Boiler broken",
            "body": "<p>An engineer is on the way.</p>",
            "confidence": 0.8,
            "notes": "Confirm the visit slot",
        })))]
    )
    with patch("app.draft_generator._get_client", return_value=client):
        yield client


def test_build_draft_prompt_includes_tone_and_history():
    ctx = DraftContext(
        subject="Boiler broken",
        contact_email="tenant@example.com",
        contact_history=[PastTicket("Heating issue", "We sent someone round.")],
        tone="friendly",
        signature="The Repairs Team",
    )
    prompt = build_draft_prompt(ctx)
    assert "warm, friendly tone" in prompt
    assert "Heating issue" in prompt
    assert "The Repairs Team" in prompt
    assert settings.response_language in prompt


def test_no_openai_key_skips_generation(db_session, make_mailbox, make_ticket_email):
    ticket, _ = make_ticket_email(make_mailbox())
    assert generate_ticket_draft(db_session, ticket.id) == {"success": False, "reason": "No OpenAI API key"}


def test_unknown_ticket_is_not_found(db_session, openai_draft):
    with pytest.raises(NotFoundError):
        generate_ticket_draft(db_session, "missing")


def test_ticket_without_inbound_email_is_skipped(db_session, make_mailbox, make_ticket_email, openai_draft):
    ticket, _ = make_ticket_email(make_mailbox(), direction="outbound")
    assert generate_ticket_draft(db_session, ticket.id) == {"success": False, "reason": "No inbound emails"}
    openai_draft.chat.completions.create.assert_not_called()


def test_build_context_gathers_history_and_templates(db_session, make_mailbox, make_ticket_email):
    mailbox = make_mailbox(tone="formal", signature="Support")
    category = Category(name="Repairs", keywords=["boiler"])
    db_session.add(category)
    db_session.commit()
    old, _ = make_ticket_email(mailbox, subject="Old heating issue", status="closed")
    db_session.add(Email(
        ticket_id=old.id,
        mailbox_id=mailbox.id,
        message_id="reply-old@x",
        direction="outbound",
        body_text="We fixed it.",
        received_at=utcnow(),
        created_at=utcnow(),
    ))
    db_session.add(EmailTemplate(category_id=category.id, name="Repair visit", body="Dear tenant", is_active=True))
    ticket, _ = make_ticket_email(mailbox)
    ticket.category_id = category.id
    db_session.commit()

    ctx = build_context(db_session, ticket, db_session.query(Email).filter(Email.ticket_id == ticket.id).all())

    assert ctx.tone == "formal"
    assert ctx.signature == "Support"
    assert [(t.subject, t.reply) for t in ctx.contact_history] == [("Old heating issue", "We fixed it.")]
    assert [t.name for t in ctx.templates] == ["Repair visit"]
    assert [m.direction for m in ctx.conversation] == ["inbound"]


def test_generate_draft_upserts_single_row(db_session, make_mailbox, make_ticket_email, openai_draft):
    ticket, _ = make_ticket_email(make_mailbox())

    first = generate_ticket_draft(db_session, ticket.id)
    second = generate_ticket_draft(db_session, ticket.id)

    assert first["success"] is True
    assert second["draft"]["body"] == "<p>An engineer is on the way.</p>"
    rows = db_session.query(Draft).filter(Draft.ticket_id == ticket.id).all()
    assert len(rows) == 1
    assert rows[0].notes == "Confirm the visit slot"


def test_auto_generate_draft_endpoint(client, service_headers, make_mailbox, make_ticket_email, openai_draft):
    ticket, _ = make_ticket_email(make_mailbox())

    r = client.post("/api/functions/auto-generate-draft", json={"ticket_id": ticket.id}, headers=service_headers)
    assert r.status_code == 200
    assert r.json()["success"] is True

    r = client.post("/api/functions/auto-generate-draft", json={"ticket_id": "missing"}, headers=service_headers)
    assert r.status_code == 404
    assert r.json() == {"error": "Ticket not found"}

"""Reply draft generation: prompt from ticket context, one LLM call in JSON mode."""
from dataclasses import dataclass, field
from typing import List, Optional

from .config import settings
from .email_classifier import _get_client, parse_json_response

TONE_INSTRUCTIONS = {
    "formal": "Use a very formal, polished tone.",
    "friendly": "Use a warm, friendly tone while staying professional.",
    "professional": "Use a professional, courteous tone.",
}


@dataclass
class ConversationMessage:
    direction: str
    body_text: str
    received_at: Optional[str] = None


@dataclass
class PastTicket:
    subject: str
    reply: Optional[str] = None


@dataclass
class TemplateHint:
    name: str
    description: Optional[str] = None
    body: Optional[str] = None


@dataclass
class DraftContext:
    subject: str
    contact_email: str
    contact_name: Optional[str] = None
    conversation: List[ConversationMessage] = field(default_factory=list)
    contact_history: List[PastTicket] = field(default_factory=list)
    similar_tickets: List[PastTicket] = field(default_factory=list)
    templates: List[TemplateHint] = field(default_factory=list)
    tone: Optional[str] = None
    signature: Optional[str] = None


def build_draft_prompt(ctx: DraftContext) -> str:
    conversation = "\n\n---\n\n".join(
        f"[{'Customer' if m.direction == 'inbound' else 'Agent'}] ({m.received_at or ''}):\n{(m.body_text or '')[:1000]}"
        for m in ctx.conversation
    )
    sections = []
    if ctx.contact_history:
        sections.append("Previous exchanges with this contact:\n" + "\n\n".join(
            f"- Subject: {t.subject}\n  " + (f"Last reply: {t.reply[:300]}..." if t.reply else "")
            for t in ctx.contact_history
        ))
    if ctx.similar_tickets:
        sections.append("Examples of replies from this mailbox:\n" + "\n\n".join(
            f"- Subject: {t.subject}\n  " + (f"Reply: {t.reply[:250]}..." if t.reply else "")
            for t in ctx.similar_tickets[:5]
        ))
    if ctx.templates:
        sections.append("Available templates:\n" + "\n\n".join(
            f"- {tpl.name}: {tpl.description or ''}\n  {(tpl.body or '')[:200]}..."
            for tpl in ctx.templates
        ))
    tone = TONE_INSTRUCTIONS.get(ctx.tone or "", TONE_INSTRUCTIONS["professional"])
    closing = f"Use this signature: {ctx.signature}" if ctx.signature else "End with a polite closing."
    extra = "\n\n".join(sections)
    return f"""You write reply drafts for a customer support team.

{tone}

CONTEXT:
Subject: {ctx.subject}
From: {ctx.contact_name or ''} <{ctx.contact_email}>

Conversation:
{conversation}

{extra}

TASK:
Write a specific, personalised reply draft, drawing on the earlier replies above.
Answer with a JSON object:
{{"subject": "Re: {ctx.subject}", "body": "the reply as HTML using <p> and <br>", "confidence": 0.8, "notes": "points the agent should check"}}

- {closing}
- Write in {settings.response_language}."""


def generate_draft(ctx: DraftContext) -> dict:
    """LLM call; raises on API errors or an empty reply."""
    client = _get_client()
    response = client.chat.completions.create(
        model=settings.openai_model,
        temperature=settings.draft_temperature,
        max_tokens=1500,
        response_format={"type": "json_object"},
        messages=[
            {"role": "system", "content": "You are a customer relations expert writing reply drafts. JSON only."},
            {"role": "user", "content": build_draft_prompt(ctx)},
        ],
    )
    text = (response.choices[0].message.content or "").strip()
    data = parse_json_response(text)
    if not data:
        raise ValueError("No draft generated")
    return {
        "subject": str(data.get("subject") or f"Re: {ctx.subject}"),
        "body": str(data.get("body") or ""),
        "confidence": data.get("confidence"),
        "notes": str(data.get("notes") or ""),
    }

"""Support email classification: keyword category match, one LLM call returning JSON, fallback without a key."""
import hashlib
import json
import re
from typing import Iterable, Optional, Tuple

from .config import settings

PRIORITIES = ("low", "medium", "high", "urgent")
SENTIMENTS = ("positive", "neutral", "negative", "mixed")

BODY_CHAR_LIMIT = 3000
FALLBACK_CONFIDENCE = 0.7


def content_hash(subject: str, sender: str, body: str) -> str:
    """Deterministic SHA-256 hash of (subject + sender + body) for cache key."""
    content = f"{subject or ''}|{sender or ''}|{(body or '')[:5000]}"
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _get_client():
    api_key = settings.openai_api_key
    if not api_key:
        raise ValueError("OPENAI_API_KEY not set. Add to .env or environment.")
    from openai import OpenAI
    return OpenAI(api_key=api_key)


def parse_json_response(text: str) -> dict:
    """Parse JSON from LLM response, handling markdown code blocks."""
    text = re.sub(r"```json\s*", "", text or "")
    text = re.sub(r"```\s*", "", text)
    text = text.strip()
    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else {}
    except json.JSONDecodeError:
        match = re.search(r"\{[\s\S]*\}", text, re.DOTALL)
        if match:
            try:
                return json.loads(match.group())
            except json.JSONDecodeError:
                pass
        return {}


def match_category(subject: str, body: str, categories: Iterable) -> Optional[object]:
    """
    Category with the most keyword hits in subject + body (case-insensitive).
    `categories` are objects with a `keywords` list; ties keep the earliest.
    """
    text = f"{subject or ''} {body or ''}".lower()
    best, best_hits = None, 0
    for cat in categories:
        keywords = [k for k in (getattr(cat, "keywords", None) or []) if k]
        hits = sum(1 for kw in keywords if kw.lower() in text)
        if hits > best_hits:
            best, best_hits = cat, hits
    return best


def fallback_classification(from_name: str, from_address: str) -> dict:
    """Deterministic classification used when no LLM is configured."""
    return {
        "category": "General enquiry",
        "subcategory": "Information request",
        "priority": "medium",
        "intent": "information_request",
        "sentiment": "neutral",
        "entities": {"name": from_name or "", "email": from_address or ""},
        "recommended_actions": [
            "Review the email content",
            "Assign to the relevant team member",
            "Send an acknowledgement",
        ],
        "suggested_assignee": None,
        "confidence": FALLBACK_CONFIDENCE,
    }


def normalize_classification(data: dict) -> dict:
    priority = str(data.get("priority") or "medium").strip().lower()
    if priority not in PRIORITIES:
        priority = "medium"
    sentiment = str(data.get("sentiment") or "neutral").strip().lower()
    if sentiment not in SENTIMENTS:
        sentiment = "neutral"
    confidence = data.get("confidence")
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        confidence = max(0.0, min(1.0, float(confidence)))
    else:
        confidence = 0.5
    entities = data.get("entities")
    actions = data.get("recommended_actions")
    assignee = data.get("suggested_assignee")
    return {
        "category": str(data.get("category") or "").strip(),
        "subcategory": str(data.get("subcategory") or "").strip(),
        "priority": priority,
        "intent": str(data.get("intent") or "").strip(),
        "sentiment": sentiment,
        "entities": entities if isinstance(entities, dict) else {},
        "recommended_actions": [str(a) for a in actions] if isinstance(actions, list) else [],
        "suggested_assignee": str(assignee).strip() if assignee else None,
        "confidence": confidence,
    }


def _categories_context(categories: Iterable) -> str:
    lines = []
    for cat in categories:
        keywords = ", ".join(getattr(cat, "keywords", None) or [])
        lines.append(f"- {cat.name}: {cat.description or ''} | Keywords: {keywords}")
    if not lines:
        return ""
    return "\n\nAvailable categories with their keywords:\n" + "\n".join(lines)


def llm_classify_email(
    subject: str,
    body: str,
    from_address: str,
    from_name: str,
    categories: Iterable = (),
) -> Tuple[dict, dict]:
    """
    One LLM call. Returns (normalized classification, raw response dict).
    Raises on API errors or a reply without a JSON object so callers can retry.
    """
    language = settings.response_language
    prompt = f"""Analyse the following support email and return a STRICT JSON object with these keys:
- category (string): main category, chosen from the available categories below
- subcategory (string)
- priority (string): "low", "medium", "high" or "urgent"
- intent (string): what the sender wants
- sentiment (string): "positive", "neutral", "negative" or "mixed"
- entities (object): {{ name, email, phone, address, property }} with the ones you find
- recommended_actions (array of strings): suggested next steps
- suggested_assignee (string or null): suggested department
- confidence (number 0-1)
{_categories_context(categories)}

Subject: {subject}
From: {from_name} <{from_address}>
Body:
{(body or "")[:BODY_CHAR_LIMIT]}

Prefer the category whose keywords appear in the subject or body.
Write all free-text values in {language}. Return ONLY valid JSON, no other text."""

    client = _get_client()
    response = client.chat.completions.create(
        model=settings.openai_model,
        temperature=settings.openai_temperature,
        max_tokens=1000,
        response_format={"type": "json_object"},
        messages=[
            {"role": "system", "content": f"You classify customer support emails. Answer in {language}. Return strict JSON only."},
            {"role": "user", "content": prompt},
        ],
    )
    text = (response.choices[0].message.content or "").strip()
    data = parse_json_response(text)
    if not data:
        raise ValueError("LLM response did not contain a JSON object")
    raw = {"source": "openai", "model": settings.openai_model, "content": data}
    return normalize_classification(data), raw

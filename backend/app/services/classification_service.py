"""Classification with cache: keyword category, hash lookup, LLM on miss, persist and update the ticket."""
import json
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..email_classifier import (
    content_hash,
    fallback_classification,
    llm_classify_email,
    match_category,
    normalize_classification,
)
from ..models import AiClassification, Category, ClassificationCache, Ticket, utcnow

logger = logging.getLogger(__name__)


def get_cached_classification(db: Session, subject: str, sender: str, body: str) -> Optional[dict]:
    """Return the normalized classification if cache hit, else None."""
    h = content_hash(subject, sender, body)
    row = db.query(ClassificationCache).filter(ClassificationCache.content_hash == h).first()
    if not row:
        return None
    try:
        return normalize_classification(json.loads(row.raw_json))
    except (TypeError, ValueError):
        return None


def store_cached_classification(db: Session, subject: str, sender: str, body: str, result: dict):
    """Upsert the cache row for this content hash."""
    h = content_hash(subject, sender, body)
    raw_json = json.dumps(result)
    existing = db.query(ClassificationCache).filter(ClassificationCache.content_hash == h).first()
    if existing:
        existing.raw_json = raw_json
        db.commit()
        return
    db.add(ClassificationCache(content_hash=h, raw_json=raw_json, created_at=utcnow()))
    try:
        db.commit()
    except IntegrityError:
        # Another worker inserted the same content_hash
        db.rollback()
        existing = db.query(ClassificationCache).filter(ClassificationCache.content_hash == h).first()
        if existing:
            existing.raw_json = raw_json
            db.commit()


def classify_and_store(
    db: Session,
    email_id: Optional[str],
    ticket_id: Optional[str],
    subject: str,
    body: str,
    from_address: str,
    from_name: str,
) -> dict:
    """
    Classify one email and persist it as an AiClassification.

    Without OPENAI_API_KEY a deterministic fallback is stored. With a key the
    cache is checked first and the LLM is called on a miss; LLM errors propagate.
    The ticket gets the keyword-matched category and the classified priority.
    """
    categories = db.query(Category).order_by(Category.name.asc()).all()
    matched = match_category(subject, body, categories)

    if not settings.openai_api_key:
        result = fallback_classification(from_name, from_address)
        raw = {"source": "fallback", "reason": "no_openai_key"}
        use_priority = False
    else:
        cached = get_cached_classification(db, subject, from_address, body)
        if cached is not None:
            result = cached
            raw = {"source": "cache", "content_hash": content_hash(subject, from_address, body)}
        else:
            result, raw = llm_classify_email(subject, body, from_address, from_name, categories)
            store_cached_classification(db, subject, from_address, body, result)
        use_priority = True

    db.add(AiClassification(
        email_id=email_id,
        ticket_id=ticket_id,
        category=result["category"],
        subcategory=result["subcategory"],
        priority=result["priority"],
        intent=result["intent"],
        sentiment=result["sentiment"],
        entities=result["entities"],
        recommended_actions=result["recommended_actions"],
        suggested_assignee=result["suggested_assignee"],
        confidence=result["confidence"],
        raw_response=raw,
        created_at=utcnow(),
    ))

    ticket = db.get(Ticket, ticket_id) if ticket_id else None
    if ticket is not None:
        if matched is not None:
            ticket.category_id = matched.id
        if use_priority:
            ticket.priority = result["priority"]
        ticket.updated_at = utcnow()
    db.commit()
    logger.info(
        f"Classified email {email_id}: {result['category'] or '-'} / {result['priority']}"
        f" (source={raw.get('source')}, keyword category={getattr(matched, 'name', None)})"
    )
    return result

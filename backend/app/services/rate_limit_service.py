"""Sliding-window rate limiting on rate_limit_attempts. Infrastructure failures allow the request."""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..models import RateLimitAttempt, utcnow

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    status_code: int
    body: dict
    headers: dict = field(default_factory=dict)


def rule_for(action: str) -> Tuple[int, int]:
    rules = settings.rate_limit_rules
    max_attempts, window_s = rules.get(action) or rules.get("default") or [100, 60]
    return int(max_attempts), int(window_s)


def _iso(dt: datetime) -> str:
    return dt.isoformat() + "Z"


def check_rate_limit(
    db: Session,
    identifier: str,
    action: str,
    metadata: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Count attempts in the window; record this one when allowed."""
    now = now or utcnow()
    max_attempts, window_s = rule_for(action)
    window_start = now - timedelta(seconds=window_s)
    attempts, oldest = (
        db.query(func.count(RateLimitAttempt.id), func.min(RateLimitAttempt.created_at))
        .filter(
            RateLimitAttempt.identifier == identifier,
            RateLimitAttempt.action == action,
            RateLimitAttempt.created_at > window_start,
        )
        .one()
    )
    attempts = attempts or 0
    if attempts >= max_attempts:
        reset = (oldest or now) + timedelta(seconds=window_s)
        return {
            "allowed": False,
            "max_attempts": max_attempts,
            "remaining": 0,
            "window_seconds": window_s,
            "retry_after": max(1, math.ceil((reset - now).total_seconds())),
            "blocked_until": _iso(reset),
        }

    db.add(RateLimitAttempt(identifier=identifier, action=action, details=metadata or {}, created_at=now))
    db.commit()
    reset = (oldest or now) + timedelta(seconds=window_s)
    return {
        "allowed": True,
        "max_attempts": max_attempts,
        "remaining": max(0, max_attempts - attempts - 1),
        "window_seconds": window_s,
        "reset_at": _iso(reset),
    }


def evaluate_rate_limit(
    db: Session,
    identifier: str,
    action: str,
    metadata: Optional[dict] = None,
    ip_address: str = "unknown",
    user_agent: str = "unknown",
) -> RateLimitDecision:
    enriched = {
        **(metadata or {}),
        "ip_address": ip_address or "unknown",
        "user_agent": user_agent or "unknown",
        "timestamp": _iso(utcnow()),
    }
    try:
        result = check_rate_limit(db, identifier, action, enriched)
    except Exception as e:
        logger.warning(f"Rate limit check failed for {action}, allowing by default: {e}")
        db.rollback()
        return RateLimitDecision(
            status_code=200,
            body={"allowed": True, "warning": "Rate limit check failed, allowing by default", "error": str(e)},
        )

    if not result["allowed"]:
        logger.info(f"Rate limit exceeded: {identifier} / {action}")
        return RateLimitDecision(
            status_code=429,
            body={**result, "error": "Rate limit exceeded"},
            headers={
                "Retry-After": str(result["retry_after"]),
                "X-RateLimit-Limit": str(result["max_attempts"]),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": result["blocked_until"],
            },
        )
    return RateLimitDecision(
        status_code=200,
        body=result,
        headers={
            "X-RateLimit-Limit": str(result["max_attempts"]),
            "X-RateLimit-Remaining": str(result["remaining"]),
            "X-RateLimit-Reset": result["reset_at"],
        },
    )

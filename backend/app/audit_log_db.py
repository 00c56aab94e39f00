"""Audit trail rows (AuditLog model)."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from .models import AuditLog, utcnow

logger = logging.getLogger(__name__)


def write_audit_log(
    db: Session,
    action: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    user_id: Optional[str] = None,
    details: Optional[dict] = None,
) -> AuditLog:
    row = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details or {},
        created_at=utcnow(),
    )
    db.add(row)
    db.commit()
    return row


def try_write_audit_log(db: Session, action: str, **kwargs) -> bool:
    """Best-effort audit write: a failure is logged and rolled back, never raised."""
    try:
        write_audit_log(db, action, **kwargs)
        return True
    except Exception as e:
        logger.warning(f"Audit log write failed for {action}: {e}")
        db.rollback()
        return False

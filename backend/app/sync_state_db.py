"""Per-mailbox sync state in DB (SyncState model): cursors and the is_syncing guard."""
from typing import Optional
from sqlalchemy.orm import Session

from .models import SyncState, utcnow


def get_sync_state(db: Session, mailbox_id: str) -> Optional[SyncState]:
    return db.query(SyncState).filter(SyncState.mailbox_id == mailbox_id).first()


def ensure_sync_state(db: Session, mailbox_id: str) -> SyncState:
    """Return the mailbox's SyncState, creating one with zeroed cursors if missing."""
    row = get_sync_state(db, mailbox_id)
    if row:
        return row
    row = SyncState(
        mailbox_id=mailbox_id,
        last_sequence_number=0,
        last_uid=0,
        total_emails_synced=0,
        is_syncing=False,
        updated_at=utcnow(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def set_syncing(db: Session, mailbox_id: str, syncing: bool = True):
    row = ensure_sync_state(db, mailbox_id)
    row.is_syncing = syncing
    if syncing:
        row.last_error = None
    row.updated_at = utcnow()
    db.commit()


def set_sync_finished(db: Session, mailbox_id: str, last_sequence_number: int, synced: int):
    """Sync reached the end of the mailbox: advance cursors and release the guard."""
    now = utcnow()
    row = ensure_sync_state(db, mailbox_id)
    row.is_syncing = False
    row.last_sequence_number = max(row.last_sequence_number or 0, last_sequence_number)
    row.total_emails_synced = (row.total_emails_synced or 0) + synced
    row.last_synced_at = now
    row.last_error = None
    row.updated_at = now
    db.commit()


def set_batch_finished(db: Session, mailbox_id: str, synced: int):
    """Partial batch: count new mail and release the guard until the next batch."""
    row = ensure_sync_state(db, mailbox_id)
    row.total_emails_synced = (row.total_emails_synced or 0) + synced
    row.is_syncing = False
    row.updated_at = utcnow()
    db.commit()


def set_sync_error(db: Session, mailbox_id: str, error: str):
    row = ensure_sync_state(db, mailbox_id)
    row.is_syncing = False
    row.last_error = error
    row.updated_at = utcnow()
    db.commit()


def get_state_dict(db: Session, mailbox_id: str) -> dict:
    default = {
        "mailbox_id": mailbox_id,
        "is_syncing": False,
        "last_sequence_number": 0,
        "last_uid": 0,
        "total_emails_synced": 0,
        "last_synced_at": None,
        "last_error": None,
    }
    row = get_sync_state(db, mailbox_id)
    if not row:
        return default
    return {
        "mailbox_id": mailbox_id,
        "is_syncing": bool(row.is_syncing),
        "last_sequence_number": row.last_sequence_number or 0,
        "last_uid": row.last_uid or 0,
        "total_emails_synced": row.total_emails_synced or 0,
        "last_synced_at": row.last_synced_at.isoformat() if row.last_synced_at else None,
        "last_error": row.last_error,
    }

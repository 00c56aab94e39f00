"""Admin mailbox create/update: IMAP settings plus the password sealed by the credential cipher."""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..audit_log_db import try_write_audit_log
from ..credential_crypto import CIPHER_VERSION, CredentialCipher, is_usable_password
from ..exceptions import InvalidRequestError, NotFoundError, ServiceError
from ..models import Mailbox, utcnow
from .credential_service import load_cipher

logger = logging.getLogger(__name__)

DEFAULT_TONE = "professional"


def save_mailbox(
    db: Session,
    name: Optional[str],
    email_address: Optional[str],
    mailbox_id: Optional[str] = None,
    imap_host: Optional[str] = None,
    imap_port: Optional[int] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    signature: Optional[str] = None,
    tone: Optional[str] = None,
    user_id: Optional[str] = None,
    cipher: Optional[CredentialCipher] = None,
) -> dict:
    """
    Create a mailbox, or update the one named by mailbox_id.

    A non-blank password is encrypted into encrypted_password_secure; a blank
    one keeps the stored credential. Returns {success, mailbox: {id, name, email_address}}.
    """
    if not name or not email_address:
        raise InvalidRequestError("Missing required fields: name, email_address")

    credentials_updated = bool(password and password.strip()) and is_usable_password(password)
    sealed = load_cipher(cipher).encrypt(password) if credentials_updated else None

    if mailbox_id:
        mailbox = db.get(Mailbox, mailbox_id)
        if mailbox is None:
            raise NotFoundError("Mailbox not found")
    else:
        mailbox = Mailbox(created_at=utcnow())
        db.add(mailbox)

    mailbox.name = name
    mailbox.email_address = email_address
    mailbox.imap_host = imap_host
    mailbox.imap_port = imap_port or 993
    mailbox.username = username
    mailbox.signature = signature or ""
    mailbox.tone = tone or DEFAULT_TONE
    mailbox.updated_at = utcnow()

    if sealed is not None:
        mailbox.encrypted_password_secure = sealed
        mailbox.encryption_version = CIPHER_VERSION
        mailbox.encrypted_at = utcnow()

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Mailbox save failed for {email_address}: {e}")
        raise ServiceError("Failed to update mailbox")

    try_write_audit_log(
        db,
        "mailbox_updated" if mailbox_id else "mailbox_created",
        resource_type="mailbox",
        resource_id=mailbox.id,
        user_id=user_id,
        details={"name": name, "email_address": email_address, "credentials_updated": credentials_updated},
    )
    logger.info(f"Mailbox {mailbox.id} saved (credentials updated: {credentials_updated})")
    return {
        "success": True,
        "mailbox": {"id": mailbox.id, "name": mailbox.name, "email_address": mailbox.email_address},
    }

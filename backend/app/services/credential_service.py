"""Credential crypto gate (encrypt/decrypt with audit) and the legacy credential migration."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..audit_log_db import try_write_audit_log, write_audit_log
from ..credential_crypto import (
    CIPHER_VERSION,
    CredentialCipher,
    CredentialDecryptError,
    EncryptionKeyMissing,
    is_usable_password,
)
from ..exceptions import ConfigurationError, InvalidRequestError, ServiceError
from ..models import Mailbox, utcnow

logger = logging.getLogger(__name__)

OPERATIONS = ("encrypt", "decrypt")
AUDIT_ACTIONS = {"encrypt": "credential_encrypted", "decrypt": "credential_decrypted"}


def load_cipher(cipher: Optional[CredentialCipher] = None) -> CredentialCipher:
    if cipher is not None:
        return cipher
    try:
        return CredentialCipher.from_settings()
    except EncryptionKeyMissing:
        logger.error("No encryption key available")
        raise ConfigurationError("Server configuration error")


def run_crypto_operation(
    db: Session,
    operation: Optional[str],
    data: Optional[str],
    mailbox_id: Optional[str] = None,
    user_id: Optional[str] = None,
    cipher: Optional[CredentialCipher] = None,
) -> dict:
    """Returns {result, version}. The audit row is written best-effort after a successful operation."""
    if not operation or not data:
        raise InvalidRequestError("Missing required fields: operation, data")
    if operation not in OPERATIONS:
        raise InvalidRequestError('Invalid operation. Use "encrypt" or "decrypt"')
    cipher = load_cipher(cipher)
    try:
        result = cipher.encrypt(data) if operation == "encrypt" else cipher.decrypt(data)
    except (CredentialDecryptError, ValueError, UnicodeDecodeError) as e:
        logger.error(f"Crypto operation failed: {e}")
        raise ServiceError("Cryptographic operation failed", details={"details": str(e)})

    try_write_audit_log(
        db,
        AUDIT_ACTIONS[operation],
        resource_type="mailbox",
        resource_id=mailbox_id,
        user_id=user_id,
        details={"operation": operation, "timestamp": utcnow().isoformat(), "via": "crypto-credentials"},
    )
    return {"result": result, "version": CIPHER_VERSION}


def migrate_legacy_credentials(db: Session, cipher: Optional[CredentialCipher] = None, user_id: Optional[str] = None) -> dict:
    """
    Encrypt every usable legacy encrypted_password into encrypted_password_secure.
    Mailboxes with an empty or placeholder password are reported as skipped and
    left untouched. Per-mailbox failures are collected and reported, never raised.
    """
    cipher = load_cipher(cipher)
    mailboxes = db.query(Mailbox).filter(Mailbox.encrypted_password_secure.is_(None)).all()
    if not mailboxes:
        return {"success": True, "message": "No mailboxes to migrate", "migrated": 0, "skipped": 0, "failed": 0, "errors": []}

    migrated, skipped, errors = 0, 0, []
    for mailbox in mailboxes:
        mailbox_id = mailbox.id
        if not is_usable_password(mailbox.encrypted_password):
            skipped += 1
            continue
        try:
            mailbox.encrypted_password_secure = cipher.encrypt(mailbox.encrypted_password)
            mailbox.encryption_version = CIPHER_VERSION
            mailbox.encrypted_at = utcnow()
            db.commit()
            write_audit_log(
                db,
                "credentials_migrated",
                resource_type="mailbox",
                resource_id=mailbox_id,
                user_id=user_id,
                details={"migrated_password": True, "migration_timestamp": utcnow().isoformat()},
            )
            migrated += 1
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to migrate mailbox {mailbox_id}: {e}")
            errors.append({"mailbox_id": mailbox_id, "error": str(e)})

    return {
        "success": not errors,
        "message": f"Migration completed: {migrated} successful, {skipped} skipped, {len(errors)} failed",
        "migrated": migrated,
        "skipped": skipped,
        "failed": len(errors),
        "errors": errors,
    }

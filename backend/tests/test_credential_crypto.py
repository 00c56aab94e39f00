"""Credential cipher, the crypto-credentials endpoint and the legacy credential migration."""
import base64
import hashlib

import pytest

from app.config import settings
from app.credential_crypto import (
    NONCE_SIZE,
    PASSWORD_PLACEHOLDER,
    CredentialCipher,
    CredentialDecryptError,
    EncryptionKeyMissing,
    resolve_key_string,
)
from app.models import AuditLog, Mailbox
from app.services.credential_service import migrate_legacy_credentials


def test_encrypt_decrypt_round_trip_uses_fresh_nonce():
    cipher = CredentialCipher("k" * 32)
    first = cipher.encrypt("imap-password")
    second = cipher.encrypt("imap-password")

    assert first != second
    assert cipher.decrypt(first) == "imap-password"
    blob = base64.b64decode(first)
    assert len(blob) == NONCE_SIZE + len("imap-password") + 16


def test_short_key_is_padded_and_long_key_truncated():
    token = CredentialCipher("short").encrypt("x")
    assert CredentialCipher("short" + "0" * 27).decrypt(token) == "x"

    token = CredentialCipher("a" * 40).encrypt("y")
    assert CredentialCipher("a" * 32).decrypt(token) == "y"


def test_key_that_encodes_past_32_bytes_is_rejected():
    with pytest.raises(ValueError):
        CredentialCipher("é" * 32)


def test_tampered_token_fails_authentication():
    cipher = CredentialCipher("k" * 32)
    blob = bytearray(base64.b64decode(cipher.encrypt("secret")))
    blob[-1] ^= 0x01
    with pytest.raises(CredentialDecryptError):
        cipher.decrypt(base64.b64encode(bytes(blob)).decode())


def test_wrong_key_and_garbage_tokens_fail():
    token = CredentialCipher("key-one").encrypt("secret")
    with pytest.raises(CredentialDecryptError):
        CredentialCipher("key-two").decrypt(token)
    with pytest.raises(CredentialDecryptError):
        CredentialCipher("key-one").decrypt("not base64!!")
    with pytest.raises(CredentialDecryptError):
        CredentialCipher("key-one").decrypt(base64.b64encode(b"short").decode())


def test_key_resolution_fails_closed_without_opt_in():
    assert resolve_key_string(encryption_key="explicit") == "explicit"
    with pytest.raises(EncryptionKeyMissing):
        resolve_key_string(encryption_key="", service_role_key="srk", allow_fallback=False)
    derived = resolve_key_string(encryption_key="", service_role_key="srk", allow_fallback=True)
    assert derived == hashlib.sha256(b"srk").hexdigest()


def test_crypto_endpoint_round_trip_writes_audit(client, db_session, anon_headers):
    r = client.post(
        "/api/functions/crypto-credentials",
        json={"operation": "encrypt", "data": "imap-password", "mailboxId": "mbx-1"},
        headers=anon_headers,
    )
    assert r.status_code == 200
    body = r.json()
    assert body["version"] == 1

    r = client.post(
        "/api/functions/crypto-credentials",
        json={"operation": "decrypt", "data": body["result"]},
        headers=anon_headers,
    )
    assert r.status_code == 200
    assert r.json()["result"] == "imap-password"

    actions = [a.action for a in db_session.query(AuditLog).order_by(AuditLog.id).all()]
    assert actions == ["credential_encrypted", "credential_decrypted"]
    assert db_session.query(AuditLog).first().resource_id == "mbx-1"


@pytest.mark.parametrize(
    "payload,error",
    [
        ({"data": "x"}, "Missing required fields: operation, data"),
        ({"operation": "encrypt"}, "Missing required fields: operation, data"),
        ({"operation": "rotate", "data": "x"}, 'Invalid operation. Use "encrypt" or "decrypt"'),
    ],
)
def test_crypto_endpoint_rejects_bad_requests(client, anon_headers, payload, error):
    r = client.post("/api/functions/crypto-credentials", json=payload, headers=anon_headers)
    assert r.status_code == 400
    assert r.json() == {"error": error}


def test_crypto_endpoint_reports_decrypt_failure(client, anon_headers):
    r = client.post(
        "/api/functions/crypto-credentials",
        json={"operation": "decrypt", "data": "not base64!!"},
        headers=anon_headers,
    )
    assert r.status_code == 500
    assert r.json()["error"] == "Cryptographic operation failed"
    assert r.json()["details"] == "Invalid token encoding"


def test_crypto_endpoint_without_key_is_configuration_error(client, anon_headers, monkeypatch):
    monkeypatch.setattr(settings, "encryption_key", None)
    monkeypatch.setattr(settings, "allow_fallback_encryption_key", False)
    r = client.post(
        "/api/functions/crypto-credentials",
        json={"operation": "encrypt", "data": "x"},
        headers=anon_headers,
    )
    assert r.status_code == 500
    assert r.json() == {"error": "Server configuration error"}


def test_crypto_endpoint_requires_auth(client):
    r = client.post("/api/functions/crypto-credentials", json={"operation": "encrypt", "data": "x"})
    assert r.status_code == 401


def test_migrate_legacy_credentials(db_session, make_mailbox):
    cipher = CredentialCipher("migration-key")
    legacy = make_mailbox(name="Legacy", email_address="legacy@example.com", encrypted_password="plain-pass")
    empty = make_mailbox(name="Empty", email_address="empty@example.com", encrypted_password=None)

    report = migrate_legacy_credentials(db_session, cipher=cipher)

    assert report["success"] is True
    assert report["migrated"] == 1
    assert report["skipped"] == 1
    db_session.expire_all()
    legacy = db_session.get(Mailbox, legacy.id)
    assert cipher.decrypt(legacy.encrypted_password_secure) == "plain-pass"
    assert legacy.encryption_version == 1
    assert db_session.get(Mailbox, empty.id).encrypted_password_secure is None
    assert db_session.query(AuditLog).filter(AuditLog.action == "credentials_migrated").count() == 1


def test_rerun_migration_does_not_recount_mailboxes_without_password(db_session, make_mailbox):
    cipher = CredentialCipher("migration-key")
    make_mailbox(encrypted_password="plain-pass")
    make_mailbox(name="Empty", email_address="empty@example.com", encrypted_password="")

    migrate_legacy_credentials(db_session, cipher=cipher)
    again = migrate_legacy_credentials(db_session, cipher=cipher)

    assert again["migrated"] == 0
    assert again["skipped"] == 1
    assert db_session.query(AuditLog).filter(AuditLog.action == "credentials_migrated").count() == 1


def test_placeholder_password_is_not_migrated(db_session, make_mailbox):
    cipher = CredentialCipher("migration-key")
    mailbox = make_mailbox(encrypted_password=PASSWORD_PLACEHOLDER)

    report = migrate_legacy_credentials(db_session, cipher=cipher)

    assert report["migrated"] == 0
    assert report["skipped"] == 1
    db_session.expire_all()
    assert db_session.get(Mailbox, mailbox.id).encrypted_password_secure is None

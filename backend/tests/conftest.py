"""Pytest fixtures: file-based sqlite DB, seeded rows, API client."""
import os
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("ANON_KEY", "test-anon-key")
os.environ.setdefault("SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key")
# Tests exercise the no-LLM paths unless they patch a key in
os.environ["OPENAI_API_KEY"] = ""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.database import get_db, get_sync_db
from app.main import app
from app.models import Base, Email, Mailbox, SyncJob, SyncState, Ticket, empty_progress, utcnow
from app.routers.sync_jobs import get_session_factory


@pytest.fixture
def db_urls(tmp_path):
    """
    Use a file-based sqlite DB so sync setup code (tests) and async app sessions
    can see the same data.
    """
    db_path = tmp_path / "test.db"
    sync_url = f"sqlite:///{db_path}"
    async_url = f"sqlite+aiosqlite:///{db_path}"
    return sync_url, async_url


@pytest.fixture
def db_engine(db_urls):
    sync_url, _ = db_urls
    engine = create_engine(sync_url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(db_engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_mailbox(db_session):
    def _make(name="Support", email_address="support@example.com", **kwargs):
        kwargs.setdefault("imap_host", "imap.example.com")
        kwargs.setdefault("encrypted_password", "legacy-secret")
        mailbox = Mailbox(name=name, email_address=email_address, created_at=utcnow(), **kwargs)
        db_session.add(mailbox)
        db_session.commit()
        return mailbox

    return _make


@pytest.fixture
def make_job(db_session):
    def _make(mailbox, status="pending", started_ago_s=None, created_ago_s=0, **kwargs):
        now = utcnow()
        job = SyncJob(
            mailbox_id=mailbox.id,
            status=status,
            job_type="incremental_sync",
            batch_size=kwargs.pop("batch_size", 20),
            progress=kwargs.pop("progress", empty_progress()),
            retry_count=kwargs.pop("retry_count", 0),
            max_retries=kwargs.pop("max_retries", 3),
            created_at=now - timedelta(seconds=created_ago_s),
            started_at=now - timedelta(seconds=started_ago_s) if started_ago_s is not None else None,
            **kwargs,
        )
        db_session.add(job)
        db_session.commit()
        return job

    return _make


@pytest.fixture
def make_sync_state(db_session):
    def _make(mailbox, is_syncing=False, **kwargs):
        row = SyncState(mailbox_id=mailbox.id, is_syncing=is_syncing, updated_at=utcnow(), **kwargs)
        db_session.add(row)
        db_session.commit()
        return row

    return _make


@pytest.fixture
def make_ticket_email(db_session):
    """Ticket with one inbound email; returns (ticket, email)."""
    def _make(mailbox, subject="Boiler broken", body="The boiler stopped working", **kwargs):
        now = utcnow()
        ticket = Ticket(
            mailbox_id=mailbox.id,
            subject=subject,
            contact_email=kwargs.pop("contact_email", "tenant@example.com"),
            contact_name="Tenant",
            status=kwargs.pop("status", "open"),
            last_message_at=now,
            created_at=now,
        )
        db_session.add(ticket)
        db_session.flush()
        email = Email(
            ticket_id=ticket.id,
            mailbox_id=mailbox.id,
            message_id=kwargs.pop("message_id", f"msg-{ticket.id}@example.com"),
            from_address=ticket.contact_email,
            from_name="Tenant",
            subject=subject,
            body_text=body,
            direction=kwargs.pop("direction", "inbound"),
            received_at=now,
            created_at=now,
        )
        db_session.add(email)
        db_session.commit()
        return ticket, email

    return _make


@pytest.fixture
def service_headers():
    return {"Authorization": f"Bearer {settings.service_role_key}"}


@pytest.fixture
def anon_headers():
    return {"Authorization": f"Bearer {settings.anon_key}"}


@pytest.fixture
def client(db_urls, db_engine, db_session):
    _, async_url = db_urls
    async_engine = create_async_engine(
        async_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    AsyncSessionLocal = async_sessionmaker(async_engine, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        async with AsyncSessionLocal() as session:
            yield session

    def override_get_sync_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_db] = override_get_sync_db
    app.dependency_overrides[get_session_factory] = lambda: sessionmaker(bind=db_engine)
    try:
        with TestClient(app, raise_server_exceptions=False) as c:
            yield c
    finally:
        app.dependency_overrides.clear()

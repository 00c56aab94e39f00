"""Alembic environment for the support desk schema; the database URL comes from app settings."""
import os
import sys

# Make backend/app importable when alembic runs from backend/
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)
os.chdir(backend_dir)

from logging.config import fileConfig
from alembic import context
from sqlalchemy import engine_from_config
from sqlalchemy.engine.url import make_url
from sqlalchemy.pool import NullPool

from app.config import settings
from app.database import SUPABASE_TRANSACTION_POOLER_PORT
from app.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _migration_url() -> str:
    """Migrations always use a sync driver; plain postgresql:// URLs get psycopg."""
    url = make_url(settings.database_url)
    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+psycopg")
    # str(URL) masks the password
    return url.render_as_string(hide_password=False)


def _connect_args(url: str) -> dict:
    parsed = make_url(url)
    if parsed.drivername.startswith("sqlite"):
        return {"check_same_thread": False}
    if parsed.port == SUPABASE_TRANSACTION_POOLER_PORT:
        return {"prepare_threshold": None}
    return {}


def run_migrations_offline():
    context.configure(
        url=_migration_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=settings.database_url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    url = _migration_url()
    conf = config.get_section(config.config_ini_section, {}) or {}
    conf["sqlalchemy.url"] = url
    connectable = engine_from_config(
        conf,
        prefix="sqlalchemy.",
        poolclass=NullPool,
        connect_args=_connect_args(url),
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

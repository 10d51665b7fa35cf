"""Migration environment for the payments, subscriptions, ledger and notification tables."""
from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from config.settings import settings
from src.db.notification_tables import NotificationRow  # noqa: F401
from src.db.subscription_tables import PaymentRow, SubscriptionRow  # noqa: F401
from src.db.tables import Base
from src.db.webhook_tables import ProcessedEventRow  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

_SYNC_DRIVERS = {"sqlite+aiosqlite": "sqlite", "postgresql+asyncpg": "postgresql"}


def sync_url() -> str:
    """Migrations run on a blocking driver; map the app's async URL onto one."""
    url = settings.DATABASE_URL
    for async_prefix, sync_prefix in _SYNC_DRIVERS.items():
        if url.startswith(async_prefix):
            return sync_prefix + url[len(async_prefix):]
    return url


def _configure(**kwargs) -> None:
    url = sync_url()
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        # SQLite cannot ALTER constraints in place
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


if context.is_offline_mode():
    _configure(url=sync_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()
else:
    with create_engine(sync_url(), poolclass=pool.NullPool).connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()

from logging.config import fileConfig

from sqlalchemy import create_engine, pool
from sqlalchemy.engine import make_url

from alembic import context
from specflow.config.settings import DatabaseSettings

# Alembic Config object
config = context.config

# Python logging from ini file
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Migrations run on the sync sqlite driver against the same file the app uses
DATABASE_URL = make_url(DatabaseSettings().url).set(drivername="sqlite").render_as_string(
    hide_password=False
)

# Import metadata for autogenerate
from specflow.storage.models import Base  # noqa: E402

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = create_engine(DATABASE_URL, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

"""
env.py — Alembic migration environment for AssistFlow

Loads DATABASE_URL from assistflow config and imports every model so
autogenerate sees the full schema.

Business Rules:
- One transaction per migration
- Enum columns are plain VARCHAR (native_enum=False); adding an enum value
  needs no migration, only a code change

Called by: alembic CLI
Depends on: assistflow.models (Base + all tables), assistflow.config (Settings)
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from assistflow.config import Settings
from assistflow.models import Base  # noqa: F401 (registers all tables on Base.metadata)

config = context.config

# sqlalchemy.url comes from settings, never from alembic.ini
settings = Settings()
config.set_main_option("sqlalchemy.url", settings.database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit SQL without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

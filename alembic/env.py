"""Alembic environment for the ispsync schema.

The database URL always comes from ``ispsync.config`` so migrations run
against the same database as the API and the workers.
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from ispsync.config import settings
from ispsync.db import Base
import ispsync.models  # noqa: F401  registers every table on Base.metadata

alembic_cfg = context.config
alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)

if alembic_cfg.config_file_name:
    fileConfig(alembic_cfg.config_file_name)


def _configure(**options) -> None:
    context.configure(target_metadata=Base.metadata, compare_type=True, **options)


def _run() -> None:
    if context.is_offline_mode():
        _configure(
            url=alembic_cfg.get_main_option("sqlalchemy.url"),
            literal_binds=True,
            dialect_opts={"paramstyle": "named"},
        )
        with context.begin_transaction():
            context.run_migrations()
        return

    engine = engine_from_config(
        alembic_cfg.get_section(alembic_cfg.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        _configure(
            connection=connection,
            render_as_batch=connection.dialect.name == "sqlite",
            transaction_per_migration=True,
        )
        with context.begin_transaction():
            context.run_migrations()


_run()

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

from app.modulith.config import load_settings
from app.modulith.container import ServiceContainer
from app.modulith.entities import EntityRegistry
from app.modulith.models import Base
from app.modulith.registry import build_composition_root

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

load_dotenv()

db_url = (os.environ.get("DATABASE_URL") or "").strip()
if db_url:
    config.set_main_option("sqlalchemy.url", db_url)

# Import every composed entity so Base.metadata covers all module tables.
_settings = load_settings()
_cr = build_composition_root(
    _settings.modules_root,
    _settings.env,
    strict_overrides=_settings.modules_strict_overrides,
)
EntityRegistry.from_definitions(_cr.persistence, ServiceContainer(_cr.services))

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
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
        context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

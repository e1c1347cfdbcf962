# NG-HEADER: Nombre de archivo: env.py
# NG-HEADER: Ubicación: db/migrations/env.py
# NG-HEADER: Descripción: Script de entorno Alembic: carga .env, prepara logging y ejecuta migraciones
# NG-HEADER: Lineamientos: Ver AGENTS.md
import os
import logging
from pathlib import Path
from logging.config import fileConfig
from urllib.parse import urlsplit

from alembic import context
from sqlalchemy import engine_from_config
from sqlalchemy.pool import NullPool
from dotenv import load_dotenv

# Logger estandar para todas las operaciones del módulo
logger = logging.getLogger("alembic.env")

# Config Alembic
config = context.config

# Logging (si alembic.ini tiene secciones de logging)
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# === Cargar variables desde .env (raíz del repo) ===
REPO_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(REPO_ROOT / ".env")

# Mismo DB_URL que la app; si no hay, usar el que compone Settings
from agent_core.config import settings  # noqa: E402

db_url = os.getenv("DB_URL") or settings.db_url


def _sync_url(url: str) -> str:
    """Alembic corre con engine síncrono: aiosqlite -> sqlite (psycopg sirve para ambos)."""
    return url.replace("sqlite+aiosqlite", "sqlite")


def _safe_url(url: str) -> str:
    parts = urlsplit(url)
    netloc = parts.netloc
    if "@" in netloc and ":" in netloc.split("@")[0]:
        user = netloc.split("@")[0].split(":")[0]
        host = netloc.split("@")[1]
        netloc = f"{user}:***@{host}"
    return parts._replace(netloc=netloc).geturl()


logger.info("DB_URL: %s", _safe_url(db_url))

# === Importar metadatos del proyecto ===
from db.base import Base  # noqa: E402
import db.models  # noqa: E402,F401

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=_sync_url(db_url),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = _sync_url(db_url)
    connectable = engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=NullPool,
        future=True,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()
        logger.info("Migraciones aplicadas con éxito")


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

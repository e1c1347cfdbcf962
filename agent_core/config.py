# NG-HEADER: Nombre de archivo: config.py
# NG-HEADER: Ubicación: agent_core/config.py
# NG-HEADER: Descripción: Constantes y configuración central del pipeline de fulfillment.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Configuración central del pipeline de fulfillment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from dotenv import load_dotenv

# Marcador que debe sustituirse en producción
STOREFRONT_PASS_PLACEHOLDER = "REEMPLAZAR_STOREFRONT_PASS"

# Carga automática de variables definidas en .env
load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class Settings:
    """Parámetros de configuración leídos de variables de entorno."""

    env: str = os.getenv("ENV", "dev")
    db_url: str = os.getenv("DB_URL", "")
    # Soporte para componer la URL si no se pasa DB_URL directamente
    db_host: str = os.getenv("DB_HOST", "localhost")
    db_port: str = os.getenv("DB_PORT", "5432")
    db_name: str = os.getenv("DB_NAME", "gerbang")
    db_user: str = os.getenv("DB_USER", "gerbang")
    db_pass: str = os.getenv("DB_PASS", "")
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Storefront upstream (automatización de navegador)
    storefront_url: str = os.getenv("STOREFRONT_URL", "https://mitrahiggs.com/")
    storefront_username: str = os.getenv("STOREFRONT_USERNAME", "")
    storefront_password: str = os.getenv("STOREFRONT_PASSWORD", STOREFRONT_PASS_PLACEHOLDER)
    storefront_headless: bool = _flag("STOREFRONT_HEADLESS", "true")
    supplier_code: str = os.getenv("SUPPLIER_CODE", "MH_OFFICIAL")
    session_cache_key: str = os.getenv("SESSION_CACHE_KEY", "storefront:cookies")
    session_cache_ttl: int = int(os.getenv("SESSION_CACHE_TTL", str(24 * 3600)))  # segundos

    # Worker
    worker_poll_interval: float = float(os.getenv("WORKER_POLL_INTERVAL", "5"))
    # Presupuesto total (segundos) para una llamada completa a place_order
    order_budget_seconds: float = float(os.getenv("ORDER_BUDGET_SECONDS", "600"))

    # Notificaciones
    telegram_enabled: bool = _flag("TELEGRAM_ENABLED", "0")
    telegram_bot_token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    telegram_admin_chat_id: str = os.getenv("TELEGRAM_ADMIN_CHAT_ID", "")
    telegram_webhook_token: str = os.getenv("TELEGRAM_WEBHOOK_TOKEN", "")
    telegram_webhook_secret: str = os.getenv("TELEGRAM_WEBHOOK_SECRET", "")
    webhook_max_attempts: int = int(os.getenv("WEBHOOK_MAX_ATTEMPTS", "3"))
    webhook_retry_delay: float = float(os.getenv("WEBHOOK_RETRY_DELAY", "2"))
    webhook_timeout: float = float(os.getenv("WEBHOOK_TIMEOUT", "10"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def __post_init__(self) -> None:
        if not self.db_url:
            # Intentar construir desde variables sueltas
            if self.db_pass:
                from urllib.parse import quote_plus as _qp
                pw_enc = _qp(self.db_pass)
            else:
                pw_enc = ""
            if self.db_user and pw_enc:
                candidate = f"postgresql+psycopg://{self.db_user}:{pw_enc}@{self.db_host}:{self.db_port}/{self.db_name}"
            elif self.db_user and self.env != "dev":
                candidate = f"postgresql+psycopg://{self.db_user}@{self.db_host}:{self.db_port}/{self.db_name}"
            else:
                candidate = ""
            if candidate:
                self.db_url = candidate
        if not self.db_url:
            if self.env == "dev":
                # Fallback amigable para no bloquear el arranque local sin Postgres
                self.db_url = "sqlite+aiosqlite:///./dev.db"
            else:
                raise RuntimeError("DB_URL debe definirse en el entorno")
        if self.storefront_password == STOREFRONT_PASS_PLACEHOLDER and self.env != "dev":
            raise RuntimeError(
                "STOREFRONT_PASSWORD debe sobrescribirse; reemplace el placeholder 'REEMPLAZAR_STOREFRONT_PASS'"
            )
        if self.webhook_max_attempts < 1:
            self.webhook_max_attempts = 1


settings = Settings()

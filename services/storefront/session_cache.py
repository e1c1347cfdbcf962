# NG-HEADER: Nombre de archivo: session_cache.py
# NG-HEADER: Ubicación: services/storefront/session_cache.py
# NG-HEADER: Descripción: Cache TTL de cookies de sesión del storefront (Redis)
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Cache de cookies de sesión con TTL.

Se lee opcionalmente al abrir sesión y se sobrescribe tras cada login. Las
fallas de escritura/lectura se registran y nunca hacen fallar el login.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

DEFAULT_TTL = 24 * 3600


class SessionCache(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...


class RedisSessionCache:
    """``SessionCache`` sobre ``redis.asyncio``."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisSessionCache":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        value = await self._client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._client.set(key, value, ex=ttl)

    async def close(self) -> None:
        await self._client.aclose()


class CookieJarStore:
    """Serializa/deserializa cookies del navegador contra un ``SessionCache``."""

    def __init__(self, cache: SessionCache, *, key: str, ttl: int = DEFAULT_TTL) -> None:
        self.cache = cache
        self.key = key
        self.ttl = ttl

    async def load(self) -> Optional[list[dict[str, Any]]]:
        try:
            raw = await self.cache.get(self.key)
        except (RedisError, OSError) as e:
            logger.warning(f"[session-cache] ⚠ No se pudo leer cookies de cache: {e}")
            return None
        if not raw:
            return None
        try:
            cookies = json.loads(raw)
        except ValueError:
            logger.warning("[session-cache] ⚠ Blob de cookies inválido en cache, se ignora")
            return None
        return cookies if isinstance(cookies, list) else None

    async def save(self, cookies: list[dict[str, Any]]) -> bool:
        try:
            await self.cache.set(self.key, json.dumps(cookies), self.ttl)
        except (RedisError, OSError) as e:
            logger.warning(f"[session-cache] ⚠ No se pudo guardar cookies en cache: {e}")
            return False
        logger.debug(f"[session-cache] {len(cookies)} cookies guardadas (ttl={self.ttl}s)")
        return True

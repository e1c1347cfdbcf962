#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: telegram.py
# NG-HEADER: Ubicación: services/routers/telegram.py
# NG-HEADER: Descripción: Webhook de Telegram para vincular chats con cuentas
# NG-HEADER: Lineamientos: Ver AGENTS.md

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request

from agent_core.config import settings
from services.deps import get_store
from services.fulfillment.store import FulfillmentStore
from services.notifications.binding import handle_update

router = APIRouter(prefix="/telegram", tags=["telegram"])


@router.post("/webhook/{token}")
async def telegram_webhook(token: str, request: Request, store: FulfillmentStore = Depends(get_store)):
    """Webhook compatible con Telegram.

    - Protegido por path token (TELEGRAM_WEBHOOK_TOKEN) y header opcional X-Telegram-Bot-Api-Secret-Token.
    - ``/start <account_id>`` vincula el chat con la cuenta; el resto se ignora.
    - Siempre responde 200 ante payloads válidos para que Telegram no reintente.
    """
    expected_token = settings.telegram_webhook_token
    if not expected_token or token != expected_token:
        raise HTTPException(status_code=404, detail="Not found")

    secret_expected = settings.telegram_webhook_secret
    secret_header = request.headers.get("X-Telegram-Bot-Api-Secret-Token")
    if secret_expected and (secret_header or "") != secret_expected:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload: Dict[str, Any] = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    result = await handle_update(payload, store)
    return {"ok": True, "result": result}

"""Feishu event subscription and card callback routes."""

from __future__ import annotations

import hmac
import logging
from collections.abc import Awaitable
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse

from feishu_bridge.channels.base import CanonicalMessage
from feishu_bridge.channels.feishu.adapter import FeishuAdapter
from feishu_bridge.channels.registry import get_channel
from feishu_bridge.logging import bind_context, clear_context, new_trace_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/feishu", tags=["feishu"])

MESSAGE_EVENT = "im.message.receive_v1"
CARD_ACTION_EVENT = "card.action.trigger"


def _adapter() -> FeishuAdapter:
    adapter = get_channel("feishu")
    if not isinstance(adapter, FeishuAdapter):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="feishu_not_configured",
        )
    return adapter


def _check_token(adapter: FeishuAdapter, token: object) -> None:
    expected = adapter.verification_token
    if not expected:
        return
    if not isinstance(token, str) or not hmac.compare_digest(token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


async def _read_json(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_json") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_json")
    return payload


async def _safe_handle(
    name: str, pending: Awaitable[CanonicalMessage | None]
) -> tuple[CanonicalMessage | None, bool]:
    try:
        return await pending, True
    except Exception:
        logger.exception("Feishu %s handling failed", name)
        return None, False


@router.post("/events")
async def events(request: Request) -> JSONResponse:
    """Handle Feishu event subscription callbacks (schema 1.0 and 2.0)."""
    payload = await _read_json(request)
    adapter = _adapter()

    if payload.get("type") == "url_verification":
        _check_token(adapter, payload.get("token"))
        return JSONResponse(content={"challenge": payload.get("challenge", "")})

    header = payload.get("header") if isinstance(payload.get("header"), dict) else {}
    event = payload.get("event") if isinstance(payload.get("event"), dict) else {}
    _check_token(adapter, header.get("token") or payload.get("token"))
    event_type = str(header.get("event_type") or event.get("type") or "")

    bind_context(trace_id=new_trace_id(), event_type=event_type, event_id=header.get("event_id"))
    try:
        if event_type == MESSAGE_EVENT:
            message, ok = await _safe_handle(event_type, adapter.handle_message_event(event))
        elif event_type == CARD_ACTION_EVENT:
            message, ok = await _safe_handle(event_type, adapter.handle_card_action(event))
        else:
            logger.info("Ignoring Feishu event type %s", event_type or "<missing>")
            return JSONResponse(content={"accepted": True, "ignored": True, "degraded": False})
    finally:
        clear_context()

    degraded = not ok
    return JSONResponse(
        status_code=202 if degraded else 200,
        content={"accepted": True, "ignored": message is None and ok, "degraded": degraded},
    )


@router.post("/card")
async def card_callback(request: Request) -> JSONResponse:
    """Handle legacy interactive-card callbacks.

    The response body is empty so the clicked card is left unchanged.
    """
    payload = await _read_json(request)
    adapter = _adapter()

    if payload.get("type") == "url_verification":
        _check_token(adapter, payload.get("token"))
        return JSONResponse(content={"challenge": payload.get("challenge", "")})

    _check_token(adapter, payload.get("token"))
    bind_context(trace_id=new_trace_id(), event_type="card.action")
    try:
        _, ok = await _safe_handle("card action", adapter.handle_card_action(payload))
    finally:
        clear_context()
    if not ok:
        logger.warning("Card action for %s was not dispatched", payload.get("open_message_id"))
    return JSONResponse(content={})

# wchic/routes/webhooks.py
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse

from wchic.core.config import settings
from wchic.core.exceptions import AuthenticationError, AuthorizationError, ValidationError
from wchic.core.logging import get_structlog_logger
from wchic.services.podio.client import PodioAPIError, get_podio_client
from wchic.services.podio.status import process_podio_hook
from wchic.services.podio.workspaces import get_registry
from wchic.services.qualification import handle_incoming_message
from wchic.services.whatsapp import extract_text_messages, verify_signature

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])

HOOK_VERIFY = "hook.verify"


# -- WhatsApp -------------------------------------------------------------


@router.get("/whatsapp", response_class=PlainTextResponse)
async def whatsapp_verify(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
) -> PlainTextResponse:
    """Meta subscription handshake: echo the challenge when the verify token matches."""
    if (
        hub_mode == "subscribe"
        and settings.whatsapp_verify_token
        and hub_verify_token == settings.whatsapp_verify_token
    ):
        logger.info("whatsapp.webhook.verified")
        return PlainTextResponse(hub_challenge or "")
    logger.warning("whatsapp.webhook.verify_failed", mode=hub_mode)
    raise AuthorizationError("Webhook verification failed", code="verify_token_mismatch")


async def _process_whatsapp_payload(payload: Dict[str, Any]) -> None:
    for message in extract_text_messages(payload):
        await handle_incoming_message(message)


@router.post("/whatsapp", status_code=status.HTTP_200_OK)
async def whatsapp_inbound(request: Request, background_tasks: BackgroundTasks):
    raw_body = await request.body()
    if not verify_signature(raw_body, request.headers.get("X-Hub-Signature-256")):
        raise AuthenticationError("Invalid webhook signature", code="invalid_signature")

    try:
        payload = json.loads(raw_body or b"{}")
    except json.JSONDecodeError:
        raise ValidationError("Invalid JSON payload", code="invalid_payload")

    background_tasks.add_task(_process_whatsapp_payload, payload)
    return {"ok": True}


# -- Podio ----------------------------------------------------------------


async def _read_podio_payload(request: Request) -> Dict[str, Any]:
    """Podio posts hooks form-encoded; JSON bodies are accepted for manual replays."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except json.JSONDecodeError:
            raise ValidationError("Invalid JSON payload", code="invalid_payload")
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return {key: value for key, value in form.items()}


@router.post("/podio", status_code=status.HTTP_200_OK)
async def podio_hook(
    request: Request,
    background_tasks: BackgroundTasks,
    workspace: Optional[str] = Query(default=None),
):
    payload = await _read_podio_payload(request)
    hook_type = payload.get("type")

    if hook_type == HOOK_VERIFY:
        hook_id = payload.get("hook_id")
        code = payload.get("code")
        if not hook_id or not code:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "invalid_hook_verify", "message": "hook.verify requires hook_id and code"},
            )

        registry = get_registry()
        target = registry.get(workspace) if workspace in registry else registry.head_office
        client = await get_podio_client()
        try:
            await client.validate_hook(target, int(hook_id), str(code))
        except PodioAPIError as e:
            logger.error("podio.hook.verify_failed", hook_id=hook_id, workspace=target.workspace_key, error=e.message)
            raise
        logger.info("podio.hook.verified", hook_id=hook_id, workspace=target.workspace_key)
        return {"ok": True}

    # Acknowledge first; reconciliation runs after the response is sent.
    background_tasks.add_task(process_podio_hook, payload, workspace)
    logger.info("podio.hook.accepted", type=hook_type, item_id=payload.get("item_id"), workspace=workspace)
    return {"ok": True}

# wchic/services/whatsapp.py
from __future__ import annotations

import asyncio
import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from wchic.core.config import settings
from wchic.core.exceptions import ExternalServiceError
from wchic.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)


class WhatsAppError(ExternalServiceError):
    def __init__(self, message: str, *, http_status: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="whatsapp_error", details=details)
        self.http_status = http_status


@dataclass(frozen=True)
class IncomingMessage:
    sender: str
    message_id: str
    timestamp: Optional[str]
    type: str
    text: Optional[str]


def verify_signature(raw_body: bytes, signature_header: Optional[str]) -> bool:
    """Check ``X-Hub-Signature-256`` against the app secret.

    Without a configured secret every payload is accepted.
    """
    if not settings.whatsapp_app_secret:
        return True
    if not signature_header:
        return False

    received = signature_header.replace("sha256=", "", 1).strip()
    expected = hmac.new(
        settings.whatsapp_app_secret.encode("utf-8"),
        raw_body,
        hashlib.sha256,
    ).hexdigest()
    valid = hmac.compare_digest(received, expected)
    if not valid:
        logger.warning("whatsapp.signature.invalid")
    return valid


def parse_incoming_messages(payload: Dict[str, Any]) -> List[IncomingMessage]:
    messages: List[IncomingMessage] = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            for msg in value.get("messages") or []:
                messages.append(
                    IncomingMessage(
                        sender=str(msg.get("from") or ""),
                        message_id=str(msg.get("id") or ""),
                        timestamp=msg.get("timestamp"),
                        type=str(msg.get("type") or ""),
                        text=(msg.get("text") or {}).get("body"),
                    )
                )
    return messages


def extract_text_messages(payload: Dict[str, Any]) -> List[IncomingMessage]:
    return [m for m in parse_incoming_messages(payload) if m.type == "text" and m.text]


async def send_text(phone_number_id: Optional[str], to: str, body: str) -> None:
    if not phone_number_id or not settings.whatsapp_token:
        raise WhatsAppError("WhatsApp sender is not configured", details={"to": to})

    url = f"{settings.whatsapp_api_base.rstrip('/')}/{phone_number_id}/messages"
    payload = {
        "messaging_product": "whatsapp",
        "to": to.lstrip("+"),
        "type": "text",
        "text": {"body": body},
    }
    headers = {
        "Authorization": f"Bearer {settings.whatsapp_token}",
        "Content-Type": "application/json",
    }

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=settings.whatsapp_timeout_seconds),
            ) as response:
                if response.status >= 300:
                    error_text = await response.text()
                    logger.error("whatsapp.send.failed", status=response.status, error=error_text[:200])
                    raise WhatsAppError(
                        f"WhatsApp send failed with HTTP {response.status}",
                        http_status=response.status,
                        details={"error": error_text[:200]},
                    )
    except asyncio.TimeoutError as e:
        raise WhatsAppError("WhatsApp send timed out") from e
    except aiohttp.ClientError as e:
        raise WhatsAppError(f"WhatsApp send failed: {str(e)[:200]}") from e

    logger.info("whatsapp.send.ok", to=payload["to"], phone_number_id=phone_number_id)

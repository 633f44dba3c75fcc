# wchic/services/alerts.py
"""
Operational alerts.

Every alert goes out over WhatsApp (ops number) and e-mail concurrently.
``alert`` never raises: a broken alert channel must not take down the flow
that tried to report something.
"""
from __future__ import annotations

import asyncio
import json
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from wchic.core.config import settings
from wchic.core.logging import get_structlog_logger
from wchic.services.whatsapp import send_text

logger = get_structlog_logger(__name__)

PODIO_SYNC_ERROR = "podio_sync_error"
LEAD_NOT_ROUTED = "lead_not_routed"
WHATSAPP_WEBHOOK_ERROR = "whatsapp_webhook_error"
DATABASE_ERROR = "database_error"
GENERIC_ERROR = "generic_error"

ALERT_LABELS: Dict[str, str] = {
    PODIO_SYNC_ERROR: "🔴 Podio Sync Falhou",
    LEAD_NOT_ROUTED: "🟡 Lead Sem Roteamento",
    WHATSAPP_WEBHOOK_ERROR: "🔴 Erro no Webhook WhatsApp",
    DATABASE_ERROR: "🔴 Erro de Banco de Dados",
    GENERIC_ERROR: "🔴 Erro no Sistema",
}


def _timestamp() -> str:
    return datetime.now(ZoneInfo(settings.alert_timezone)).strftime("%d/%m/%Y %H:%M:%S")


def format_details(details: Dict[str, Any]) -> str:
    lines = []
    for key, value in details.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, ensure_ascii=False, default=str)
        lines.append(f"• *{key}:* {value}")
    return "\n".join(lines)


def build_whatsapp_text(label: str, message: str, details: Optional[Dict[str, Any]], timestamp: str) -> str:
    text = f"*[WChic Alert]*\n{label}\n📅 {timestamp}\n📝 {message}"
    if details:
        text += f"\n\n{format_details(details)}"
    return text


def build_email(label: str, message: str, details: Optional[Dict[str, Any]], timestamp: str) -> EmailMessage:
    email = EmailMessage()
    email["Subject"] = f"[WChic] {label}"
    email["From"] = f"WChic Sistema <{settings.smtp_username}>"
    email["To"] = settings.alert_email_to

    body = f"Data/Hora: {timestamp}\nMensagem: {message}\n"
    if details:
        body += "\n" + json.dumps(details, ensure_ascii=False, indent=2, default=str)
    email.set_content(body)
    return email


async def _send_whatsapp_alert(text: str) -> None:
    if not settings.whatsapp_ops_phone_number_id or not settings.whatsapp_token or not settings.alert_whatsapp_to:
        logger.warning("alerts.whatsapp.skipped", reason="not_configured")
        return
    to = "".join(ch for ch in settings.alert_whatsapp_to if ch.isdigit())
    await send_text(settings.whatsapp_ops_phone_number_id, to, text)
    logger.info("alerts.whatsapp.sent", to=to)


def _deliver_email(email: EmailMessage) -> None:
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as smtp:
        smtp.starttls()
        smtp.login(settings.smtp_username, settings.smtp_password)
        smtp.send_message(email)


async def _send_email_alert(email_factory) -> None:
    if not settings.smtp_username or not settings.smtp_password or not settings.alert_email_to:
        logger.warning("alerts.email.skipped", reason="not_configured")
        return
    email = email_factory()
    await asyncio.to_thread(_deliver_email, email)
    logger.info("alerts.email.sent", to=settings.alert_email_to, subject=email["Subject"])


async def alert(alert_type: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
    label = ALERT_LABELS.get(alert_type, ALERT_LABELS[GENERIC_ERROR])
    timestamp = _timestamp()

    results = await asyncio.gather(
        _send_whatsapp_alert(build_whatsapp_text(label, message, details, timestamp)),
        _send_email_alert(lambda: build_email(label, message, details, timestamp)),
        return_exceptions=True,
    )
    for channel, result in zip(("whatsapp", "email"), results):
        if isinstance(result, Exception):
            logger.error("alerts.delivery_failed", channel=channel, alert_type=alert_type, error=str(result)[:200])

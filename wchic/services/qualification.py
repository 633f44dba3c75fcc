# wchic/services/qualification.py
"""
Lead qualification over WhatsApp.

Each inbound client message is stored, the conversation is sent to the LLM,
and the reply is split into the text sent back to the client and a data block
(city, UF, event date, profile, guest count). Extracted data lands on
``lead_events``; once a municipality code is known the lead is routed by the
database trigger and synced to Podio.
"""
from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

import aiohttp

from wchic.core.config import settings
from wchic.core.exceptions import ExternalServiceError
from wchic.core.logging import get_structlog_logger
from wchic.db.session import session_scope
from wchic.services import leads
from wchic.services.alerts import GENERIC_ERROR, WHATSAPP_WEBHOOK_ERROR, alert
from wchic.services.ibge import find_ibge_code
from wchic.services.normalization import (
    NormalizationError,
    UF_MAP,
    build_external_id,
    normalize_event_date,
    normalize_phone_br,
)
from wchic.services.podio.sync import sync_lead_safely
from wchic.services.whatsapp import IncomingMessage, send_text

logger = get_structlog_logger(__name__)

DATA_START = "===DADOS==="
DATA_END = "===FIM==="
HISTORY_LIMIT = 30

SYSTEM_PROMPT = """Você é um assistente virtual da WChic, empresa especializada em tendas, estruturas e mobiliário para eventos. Seu nome é Whi (pronuncia-se "Wai").

Seu objetivo é qualificar leads que entram pelo WhatsApp, coletando as informações necessárias para que nossa equipe possa fazer um orçamento.

INFORMAÇÕES QUE VOCÊ PRECISA COLETAR (nesta ordem de prioridade):
1. Cidade e estado do evento
2. Data do evento
3. Perfil/tipo do evento (casamento, corporativo, aniversário, festa junina, etc.)
4. Número aproximado de convidados

REGRAS IMPORTANTES:
- Tom descontraído, amigável e acolhedor
- Faça UMA pergunta por vez
- Se o cliente já forneceu alguma informação, não pergunte de novo
- Quando tiver coletado todas as informações, agradeça e diga que a equipe entrará em contato
- Se o cliente perguntar sobre preço, diga que a equipe vai elaborar um orçamento personalizado
- Nunca cite valores ou preços
- Responda em português brasileiro
- Mensagens curtas e diretas (máximo 3 linhas)

EXTRAÇÃO DE DADOS:
Ao final de cada resposta, inclua um bloco JSON com os dados extraídos até agora, no formato exato abaixo:

===DADOS===
{
  "cidade": "nome da cidade ou null",
  "uf": "sigla do estado (ex: SP) ou null",
  "data_evento": "YYYY-MM-DD ou null",
  "perfil_evento": "tipo do evento ou null",
  "num_convidados": "número aproximado ou null",
  "qualificacao_completa": true ou false
}
===FIM===

Inclua SEMPRE o bloco ===DADOS=== ao final, mesmo que todos os campos sejam null."""


@dataclass(frozen=True)
class QualificationData:
    cidade: Optional[str] = None
    uf: Optional[str] = None
    data_evento: Optional[str] = None
    perfil_evento: Optional[str] = None
    num_convidados: Optional[str] = None
    qualificacao_completa: bool = False

    @property
    def has_data(self) -> bool:
        return bool(self.cidade or self.data_evento or self.perfil_evento or self.num_convidados)


@dataclass(frozen=True)
class AgentReply:
    message: str
    data: Optional[QualificationData]


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == "null":
        return None
    return text


def parse_reply(raw: str) -> AgentReply:
    """Split an agent reply into client text and the trailing data block."""
    start = raw.find(DATA_START)
    end = raw.find(DATA_END)
    if start == -1 or end == -1 or end < start:
        return AgentReply(message=raw.strip(), data=None)

    message = raw[:start].strip()
    block = raw[start + len(DATA_START):end].strip()
    try:
        parsed = json.loads(block)
    except json.JSONDecodeError:
        logger.warning("qualification.data_block.invalid")
        return AgentReply(message=message, data=None)
    if not isinstance(parsed, dict):
        return AgentReply(message=message, data=None)

    uf = _clean(parsed.get("uf"))
    return AgentReply(
        message=message,
        data=QualificationData(
            cidade=_clean(parsed.get("cidade")),
            uf=uf.upper() if uf else None,
            data_evento=_clean(parsed.get("data_evento")),
            perfil_evento=_clean(parsed.get("perfil_evento")),
            num_convidados=_clean(parsed.get("num_convidados")),
            qualificacao_completa=parsed.get("qualificacao_completa") is True,
        ),
    )


async def call_agent(history: List[Dict[str, str]]) -> Optional[str]:
    payload = {
        "model": settings.openai_model,
        "max_tokens": 500,
        "temperature": 0.7,
        "messages": [{"role": "system", "content": SYSTEM_PROMPT}, *history],
    }
    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "Content-Type": "application/json",
    }

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                settings.openai_api_url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=settings.openai_timeout_seconds),
            ) as response:
                if response.status >= 300:
                    error_text = await response.text()
                    raise ExternalServiceError(
                        f"OpenAI request failed with HTTP {response.status}",
                        code="openai_error",
                        details={"error": error_text[:200]},
                    )
                data = await response.json()
    except asyncio.TimeoutError as e:
        raise ExternalServiceError("OpenAI request timed out", code="openai_error") from e
    except aiohttp.ClientError as e:
        raise ExternalServiceError(f"OpenAI request failed: {str(e)[:200]}", code="openai_error") from e

    choices = data.get("choices") or []
    if not choices:
        return None
    return (choices[0].get("message") or {}).get("content")


def _event_day(value: Optional[str]) -> Optional[date]:
    try:
        day = normalize_event_date(value)
    except (NormalizationError, ValueError):
        logger.warning("qualification.event_date.invalid", value=value)
        return None
    return date.fromisoformat(day) if day else None


async def apply_qualification_data(lead_id: int, data: QualificationData) -> Optional[str]:
    """Persist extracted data. Returns the IBGE code when one was resolved."""
    ibge_code = None
    if data.cidade:
        municipality = await find_ibge_code(data.cidade, data.uf)
        if municipality is not None:
            ibge_code = municipality.ibge_code

    estado = UF_MAP.get(data.uf, data.uf) if data.uf else None

    async with session_scope() as session:
        await leads.upsert_lead_event(
            session,
            lead_id=lead_id,
            cidade=data.cidade,
            estado=estado,
            ibge_code=ibge_code,
            event_start_date=_event_day(data.data_evento),
            perfil_evento=data.perfil_evento,
            pessoas_estimadas=data.num_convidados,
        )
        await session.commit()

    logger.info(
        "qualification.lead_updated",
        lead_id=lead_id,
        ibge_code=ibge_code,
        complete=data.qualificacao_completa,
    )
    return ibge_code


async def process_message(lead_id: int, phone_e164: str) -> None:
    """Run one qualification turn for a lead whose latest message is already stored."""
    if not settings.openai_api_key:
        logger.warning("qualification.skipped", lead_id=lead_id, reason="openai_not_configured")
        return
    if not settings.whatsapp_clients_phone_number_id:
        logger.warning("qualification.skipped", lead_id=lead_id, reason="whatsapp_sender_not_configured")
        return

    try:
        async with session_scope() as session:
            history = await leads.get_conversation_history(session, lead_id, limit=HISTORY_LIMIT)
        if not history:
            return

        raw = await call_agent(history)
        if not raw:
            return
        reply = parse_reply(raw)

        async with session_scope() as session:
            await leads.insert_lead_message(
                session, lead_id=lead_id, role="agent", content=reply.message, stage="qualification"
            )
            await session.commit()

        await send_text(settings.whatsapp_clients_phone_number_id, phone_e164, reply.message)

        ibge_code = None
        if reply.data is not None and reply.data.has_data:
            ibge_code = await apply_qualification_data(lead_id, reply.data)
    except Exception as e:
        logger.error("qualification.failed", lead_id=lead_id, error=str(e)[:500])
        await alert(
            GENERIC_ERROR,
            "Erro na IA ao processar mensagem do WhatsApp",
            {"lead_id": lead_id, "error": str(e)[:200]},
        )
        return

    if ibge_code:
        await sync_lead_safely(lead_id)


async def handle_incoming_message(message: IncomingMessage) -> None:
    """Store one inbound WhatsApp text and run a qualification turn for its lead."""
    phone = normalize_phone_br(message.sender)
    if phone is None:
        logger.warning("whatsapp.message.invalid_phone", message_id=message.message_id)
        return

    try:
        async with session_scope() as session:
            lead = await leads.find_latest_lead_by_phone(session, phone)
            if lead is None:
                lead = await leads.find_or_create_lead(
                    session, external_id=build_external_id(phone), phone_e164=phone
                )
            await leads.insert_lead_message(
                session, lead_id=lead.id, role="user", content=message.text or "", stage="qualification"
            )
            await session.commit()
    except Exception as e:
        logger.error("whatsapp.message.store_failed", message_id=message.message_id, error=str(e)[:500])
        await alert(
            WHATSAPP_WEBHOOK_ERROR,
            "Falha ao registrar mensagem do WhatsApp",
            {"message_id": message.message_id, "error": str(e)[:200]},
        )
        return

    logger.info("whatsapp.message.stored", lead_id=lead.id, message_id=message.message_id)
    await process_message(lead.id, phone)

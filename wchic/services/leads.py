# wchic/services/leads.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from wchic.core.exceptions import NotFoundError
from wchic.services.normalization import expand_state


class LeadNotFoundError(NotFoundError):
    def __init__(self, lead_id: int) -> None:
        super().__init__(
            f"Lead {lead_id} not found",
            code="lead_not_found",
            details={"lead_id": lead_id},
        )
        self.lead_id = lead_id


@dataclass(frozen=True)
class LeadRecord:
    id: int
    external_id: str
    phone_e164: str
    status: str
    franchise_id: Optional[int]
    created: bool


_UPSERT_LEAD = text(
    """
    INSERT INTO leads (external_id, phone_e164, source)
    VALUES (:external_id, :phone_e164, :source)
    ON CONFLICT (external_id)
    DO UPDATE SET updated_at = NOW()
    RETURNING id, external_id, phone_e164, status, franchise_id, (xmax = 0) AS created
    """
)

_INSERT_MESSAGE = text(
    """
    INSERT INTO lead_messages (lead_id, role, content, stage)
    VALUES (:lead_id, :role, :content, :stage)
    """
)

# Null inputs never erase what an earlier message already established.
_UPSERT_EVENT = text(
    """
    INSERT INTO lead_events (
      lead_id, cidade, estado, ibge_code,
      event_start_date, event_end_date,
      perfil_evento, pessoas_estimadas, decisor
    )
    VALUES (
      :lead_id, :cidade, :estado, :ibge_code,
      :event_start_date, :event_end_date,
      :perfil_evento, :pessoas_estimadas, :decisor
    )
    ON CONFLICT (lead_id) DO UPDATE SET
      cidade = COALESCE(EXCLUDED.cidade, lead_events.cidade),
      estado = COALESCE(EXCLUDED.estado, lead_events.estado),
      ibge_code = COALESCE(EXCLUDED.ibge_code, lead_events.ibge_code),
      event_start_date = COALESCE(EXCLUDED.event_start_date, lead_events.event_start_date),
      event_end_date = COALESCE(EXCLUDED.event_end_date, lead_events.event_end_date),
      perfil_evento = COALESCE(EXCLUDED.perfil_evento, lead_events.perfil_evento),
      pessoas_estimadas = COALESCE(EXCLUDED.pessoas_estimadas, lead_events.pessoas_estimadas),
      decisor = COALESCE(EXCLUDED.decisor, lead_events.decisor),
      updated_at = NOW()
    """
)


async def find_or_create_lead(
    session: AsyncSession,
    *,
    external_id: str,
    phone_e164: str,
    source: str = "whatsapp",
) -> LeadRecord:
    res = await session.execute(
        _UPSERT_LEAD,
        {"external_id": external_id, "phone_e164": phone_e164, "source": source},
    )
    row = res.mappings().first()
    if row is None:
        raise RuntimeError("lead_upsert_failed")

    return LeadRecord(
        id=int(row["id"]),
        external_id=str(row["external_id"]),
        phone_e164=str(row["phone_e164"]),
        status=str(row["status"]),
        franchise_id=row["franchise_id"],
        created=bool(row["created"]),
    )


async def insert_lead_message(
    session: AsyncSession,
    *,
    lead_id: int,
    role: str,
    content: str,
    stage: Optional[str] = None,
) -> None:
    await session.execute(
        _INSERT_MESSAGE,
        {"lead_id": lead_id, "role": role, "content": content, "stage": stage},
    )


async def upsert_lead_event(
    session: AsyncSession,
    *,
    lead_id: int,
    cidade: Optional[str] = None,
    estado: Optional[str] = None,
    ibge_code: Optional[str] = None,
    event_start_date: Optional[date] = None,
    event_end_date: Optional[date] = None,
    perfil_evento: Optional[str] = None,
    pessoas_estimadas: Optional[str] = None,
    decisor: Optional[bool] = None,
) -> None:
    """Write qualification data; populating ``ibge_code`` fires the routing trigger."""
    await session.execute(
        _UPSERT_EVENT,
        {
            "lead_id": lead_id,
            "cidade": cidade,
            "estado": estado,
            "ibge_code": ibge_code,
            "event_start_date": event_start_date,
            "event_end_date": event_end_date,
            "perfil_evento": perfil_evento,
            "pessoas_estimadas": pessoas_estimadas,
            "decisor": decisor,
        },
    )


async def get_conversation_history(
    session: AsyncSession,
    lead_id: int,
    limit: int = 30,
) -> List[Dict[str, str]]:
    res = await session.execute(
        text(
            """
            SELECT role, content
            FROM lead_messages
            WHERE lead_id = :lead_id
            ORDER BY created_at ASC
            LIMIT :limit
            """
        ),
        {"lead_id": lead_id, "limit": limit},
    )
    return [
        {"role": "assistant" if row["role"] == "agent" else "user", "content": row["content"]}
        for row in res.mappings().all()
    ]


async def get_lead_routing(session: AsyncSession, lead_id: int) -> Optional[Dict[str, Any]]:
    res = await session.execute(
        text(
            """
            SELECT l.franchise_id, f.franchise_name, f.podio_app_id
            FROM leads l
            JOIN franchises f ON f.id = l.franchise_id
            WHERE l.id = :lead_id
            """
        ),
        {"lead_id": lead_id},
    )
    row = res.mappings().first()
    return dict(row) if row else None


async def find_latest_lead_by_phone(session: AsyncSession, phone_e164: str) -> Optional[LeadRecord]:
    res = await session.execute(
        text(
            """
            SELECT id, external_id, phone_e164, status, franchise_id
            FROM leads
            WHERE phone_e164 = :phone
            ORDER BY created_at DESC
            LIMIT 1
            """
        ),
        {"phone": phone_e164},
    )
    row = res.mappings().first()
    if row is None:
        return None
    return LeadRecord(
        id=int(row["id"]),
        external_id=str(row["external_id"]),
        phone_e164=str(row["phone_e164"]),
        status=str(row["status"]),
        franchise_id=row["franchise_id"],
        created=False,
    )


async def list_leads(
    session: AsyncSession,
    *,
    cidade: Optional[str] = None,
    estado: Optional[str] = None,
    franchise_id: Optional[int] = None,
    status: Optional[str] = None,
    q: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Dict[str, Any]:
    clauses = ["1 = 1"]
    params: Dict[str, Any] = {"limit": limit, "offset": offset}

    if cidade:
        clauses.append("LOWER(le.cidade) = LOWER(:cidade)")
        params["cidade"] = cidade
    if estado:
        clauses.append("LOWER(le.estado) = LOWER(:estado)")
        params["estado"] = estado
    if franchise_id:
        clauses.append("l.franchise_id = :franchise_id")
        params["franchise_id"] = franchise_id
    if status:
        clauses.append("l.status = :status")
        params["status"] = status
    if q:
        clauses.append("(l.phone_e164 ILIKE :q OR l.external_id ILIKE :q OR le.cidade ILIKE :q)")
        params["q"] = f"%{q}%"

    where = " AND ".join(clauses)
    base = f"""
        FROM leads l
        LEFT JOIN lead_events le ON le.lead_id = l.id
        LEFT JOIN franchises f ON f.id = l.franchise_id
        WHERE {where}
    """

    total = (await session.execute(text(f"SELECT COUNT(*) AS total {base}"), params)).scalar_one()
    rows = await session.execute(
        text(
            f"""
            SELECT
              l.id, l.external_id, l.phone_e164, l.status, l.franchise_id,
              l.podio_item_id_franqueadora, l.podio_item_id_franquia, l.podio_synced_at,
              l.created_at,
              le.cidade, le.estado, le.ibge_code, le.event_start_date,
              le.perfil_evento, le.pessoas_estimadas,
              f.franchise_name
            {base}
            ORDER BY l.created_at DESC
            LIMIT :limit OFFSET :offset
            """
        ),
        params,
    )
    return {
        "total": int(total),
        "limit": limit,
        "offset": offset,
        "items": [dict(row) for row in rows.mappings().all()],
    }


async def get_lead_detail(session: AsyncSession, lead_id: int) -> Dict[str, Any]:
    res = await session.execute(
        text(
            """
            SELECT
              l.*,
              le.cidade, le.estado, le.ibge_code, le.event_start_date, le.event_end_date,
              le.perfil_evento, le.pessoas_estimadas, le.decisor,
              f.franchise_name, f.podio_app_id
            FROM leads l
            LEFT JOIN lead_events le ON le.lead_id = l.id
            LEFT JOIN franchises f ON f.id = l.franchise_id
            WHERE l.id = :lead_id
            """
        ),
        {"lead_id": lead_id},
    )
    row = res.mappings().first()
    if row is None:
        raise LeadNotFoundError(lead_id)

    messages = await session.execute(
        text(
            """
            SELECT id, role, content, stage, created_at
            FROM lead_messages
            WHERE lead_id = :lead_id
            ORDER BY created_at ASC
            """
        ),
        {"lead_id": lead_id},
    )
    return {"lead": dict(row), "messages": [dict(m) for m in messages.mappings().all()]}


async def set_lead_status(session: AsyncSession, lead_id: int, status: str) -> None:
    res = await session.execute(
        text(
            """
            UPDATE leads
            SET status = :status, updated_at = NOW()
            WHERE id = :lead_id
            RETURNING id
            """
        ),
        {"lead_id": lead_id, "status": status},
    )
    if res.first() is None:
        raise LeadNotFoundError(lead_id)


async def find_franchise_for_territory(
    session: AsyncSession,
    *,
    cidade: str,
    estado: str,
    ibge_code: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Active franchise covering a municipality; the IBGE code wins over the name match."""
    res = await session.execute(
        text(
            """
            SELECT f.id, f.franchise_name, f.podio_app_id, t.territory_status
            FROM franchises f
            JOIN franchise_territories t ON t.franchise_id = f.id
            WHERE f.is_active
              AND (
                (CAST(:ibge_code AS TEXT) IS NOT NULL AND t.ibge_code = :ibge_code)
                OR (LOWER(t.cidade) = LOWER(:cidade) AND LOWER(t.estado) IN (LOWER(:estado), LOWER(:estado_full)))
              )
            ORDER BY (t.ibge_code = :ibge_code) DESC NULLS LAST, t.id
            LIMIT 1
            """
        ),
        {
            "cidade": cidade,
            "estado": estado,
            "estado_full": expand_state(estado),
            "ibge_code": ibge_code,
        },
    )
    row = res.mappings().first()
    return dict(row) if row else None


async def set_lead_routing(
    session: AsyncSession,
    *,
    lead_id: int,
    franchise_id: int,
    territory_status: Optional[str] = None,
) -> None:
    await session.execute(
        text(
            """
            UPDATE leads
            SET franchise_id = :franchise_id,
                territory_status = :territory_status,
                status = CASE WHEN status = 'new' THEN 'routed' ELSE status END,
                routed_at = NOW(),
                updated_at = NOW()
            WHERE id = :lead_id
            """
        ),
        {"lead_id": lead_id, "franchise_id": franchise_id, "territory_status": territory_status},
    )

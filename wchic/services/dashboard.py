# wchic/services/dashboard.py
from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

UNROUTED_LABEL = "Não roteado"

# A lead is qualified once all four qualification answers are stored.
_QUALIFIED = """
    le.cidade IS NOT NULL
    AND le.event_start_date IS NOT NULL
    AND le.perfil_evento IS NOT NULL
    AND le.pessoas_estimadas IS NOT NULL
"""


async def get_stats(session: AsyncSession) -> Dict[str, Any]:
    totals = await session.execute(
        text(
            f"""
            SELECT
              COUNT(*)::int AS total_leads,
              COUNT(*) FILTER (WHERE le.cidade IS NOT NULL)::int AS com_cidade,
              COUNT(*) FILTER (WHERE le.event_start_date IS NOT NULL)::int AS com_data,
              COUNT(*) FILTER (WHERE le.perfil_evento IS NOT NULL)::int AS com_perfil,
              COUNT(*) FILTER (WHERE {_QUALIFIED})::int AS qualificados
            FROM leads l
            LEFT JOIN lead_events le ON le.lead_id = l.id
            """
        )
    )

    by_franchise = await session.execute(
        text(
            f"""
            SELECT
              COALESCE(f.franchise_name, :unrouted) AS franchise_name,
              f.id AS franchise_id,
              COUNT(*)::int AS total,
              COUNT(*) FILTER (WHERE {_QUALIFIED})::int AS qualificados
            FROM leads l
            LEFT JOIN franchises f ON f.id = l.franchise_id
            LEFT JOIN lead_events le ON le.lead_id = l.id
            GROUP BY f.id, f.franchise_name
            ORDER BY total DESC
            """
        ),
        {"unrouted": UNROUTED_LABEL},
    )

    daily = await session.execute(
        text(
            """
            SELECT DATE(l.created_at) AS day, COUNT(*)::int AS count
            FROM leads l
            WHERE l.created_at >= NOW() - INTERVAL '30 days'
            GROUP BY DATE(l.created_at)
            ORDER BY day
            """
        )
    )

    return {
        "totals": dict(totals.mappings().first() or {}),
        "by_franchise": [dict(r) for r in by_franchise.mappings().all()],
        "daily": [dict(r) for r in daily.mappings().all()],
    }


async def list_dashboard_leads(
    session: AsyncSession,
    *,
    franchise_id: Optional[int] = None,
    status: Optional[str] = None,
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 25,
) -> Dict[str, Any]:
    page = max(1, page)
    limit = min(100, max(1, limit))
    params: Dict[str, Any] = {"limit": limit, "offset": (page - 1) * limit, "unrouted": UNROUTED_LABEL}

    conditions = []
    if franchise_id:
        conditions.append("l.franchise_id = :franchise_id")
        params["franchise_id"] = franchise_id
    if status:
        conditions.append("l.status = :status")
        params["status"] = status
    if q:
        conditions.append("(l.phone_e164 ILIKE :q OR le.cidade ILIKE :q)")
        params["q"] = f"%{q}%"
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    total = (
        await session.execute(
            text(
                f"""
                SELECT COUNT(*)::int AS total
                FROM leads l
                LEFT JOIN lead_events le ON le.lead_id = l.id
                {where}
                """
            ),
            params,
        )
    ).scalar_one()

    rows = await session.execute(
        text(
            f"""
            SELECT
              l.id, l.phone_e164, l.source, l.status, l.territory_status, l.franchise_id,
              COALESCE(f.franchise_name, :unrouted) AS franchise_name,
              l.created_at, l.updated_at,
              le.cidade, le.estado, le.event_start_date, le.perfil_evento, le.pessoas_estimadas,
              ({_QUALIFIED}) AS qualificado,
              (SELECT COUNT(*)::int FROM lead_messages lm WHERE lm.lead_id = l.id) AS msg_count
            FROM leads l
            LEFT JOIN lead_events le ON le.lead_id = l.id
            LEFT JOIN franchises f ON f.id = l.franchise_id
            {where}
            ORDER BY l.created_at DESC
            LIMIT :limit OFFSET :offset
            """
        ),
        params,
    )

    return {
        "leads": [dict(r) for r in rows.mappings().all()],
        "total": int(total),
        "page": page,
        "limit": limit,
        "total_pages": -(-int(total) // limit),
    }

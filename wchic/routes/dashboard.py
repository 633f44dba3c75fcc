# wchic/routes/dashboard.py
from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from wchic.db.session import get_session
from wchic.services import dashboard
from wchic.services.auth import ROLE_ADMIN, ROLE_DASHBOARD, require_role
from wchic.services.leads import get_lead_detail
from wchic.services.podio.workspaces import get_registry

router = APIRouter(
    prefix="/dash",
    tags=["dashboard"],
    dependencies=[Depends(require_role(ROLE_ADMIN, ROLE_DASHBOARD))],
)


@router.get("/stats")
async def stats(session: AsyncSession = Depends(get_session)) -> Dict:
    return await dashboard.get_stats(session)


@router.get("/leads")
async def leads(
    franchise: Optional[int] = None,
    status: Optional[str] = None,
    q: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=25, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> Dict:
    return await dashboard.list_dashboard_leads(
        session, franchise_id=franchise, status=status, q=q, page=page, limit=limit
    )


@router.get("/leads/{lead_id}")
async def lead_detail(lead_id: int, session: AsyncSession = Depends(get_session)) -> Dict:
    return await get_lead_detail(session, lead_id)


@router.get("/franchises")
async def franchises(session: AsyncSession = Depends(get_session)) -> List[Dict]:
    """Franchise list for dashboard filters, tagged with their Podio workspace."""
    registry = get_registry()
    res = await session.execute(
        text("SELECT id, franchise_name, podio_app_id FROM franchises ORDER BY franchise_name")
    )
    rows = []
    for row in res.mappings().all():
        workspace = registry.by_app_id(row["podio_app_id"])
        rows.append({**row, "workspace_key": workspace.workspace_key if workspace else None})
    return rows

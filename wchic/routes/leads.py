# wchic/routes/leads.py
from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wchic.core.logging import get_structlog_logger
from wchic.db.session import get_session
from wchic.schemas.lead import LeadList, StatusUpdate, StatusUpdateResponse, StatusPushOut, SyncResponse
from wchic.services import leads
from wchic.services.auth import ROLE_ADMIN, require_role
from wchic.services.podio.status import change_lead_status
from wchic.services.podio.sync import sync_lead_to_podio

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/leads", tags=["leads"], dependencies=[Depends(require_role(ROLE_ADMIN))])


@router.get("", response_model=LeadList)
async def list_leads(
    cidade: Optional[str] = None,
    estado: Optional[str] = None,
    franchise_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    return await leads.list_leads(
        session,
        cidade=cidade,
        estado=estado,
        franchise_id=franchise_id,
        status=status,
        limit=limit,
        offset=offset,
    )


@router.get("/{lead_id}")
async def get_lead(lead_id: int, session: AsyncSession = Depends(get_session)) -> Dict:
    return await leads.get_lead_detail(session, lead_id)


@router.post("/{lead_id}/sync-podio", response_model=SyncResponse)
async def sync_podio(lead_id: int, session: AsyncSession = Depends(get_session)):
    """Manual resync. Podio failures surface as 502 through the exception handlers."""
    result = await sync_lead_to_podio(session, lead_id)
    logger.info("lead.manual_sync", lead_id=lead_id, ok=result.ok, reason=result.reason)
    return result.to_dict()


@router.patch("/{lead_id}/status", response_model=StatusUpdateResponse)
async def update_status(
    lead_id: int,
    payload: StatusUpdate,
    session: AsyncSession = Depends(get_session),
):
    results = await change_lead_status(session, lead_id, payload.status)
    return StatusUpdateResponse(
        lead_id=lead_id,
        status=payload.status,
        podio=[
            StatusPushOut(
                workspace_key=r.workspace_key,
                pushed=r.pushed,
                reason=r.reason,
                item_id=r.item_id,
            )
            for r in results
        ],
    )

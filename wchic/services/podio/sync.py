# wchic/services/podio/sync.py
"""
Dual write of one lead into Podio.

The head office workspace always receives the lead; the routed franchise
workspace receives it too when it is a different workspace. Writes run in
that order and a head office failure stops the sync before the franchise
write.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from wchic.core.config import settings
from wchic.core.logging import get_structlog_logger
from wchic.db.session import session_scope
from wchic.services.alerts import LEAD_NOT_ROUTED, PODIO_SYNC_ERROR, alert
from wchic.services.jobs import schedule_lead_jobs
from wchic.services.leads import LeadNotFoundError
from wchic.services.podio.canonical import build_canonical
from wchic.services.podio.client import PodioClient, get_podio_client
from wchic.services.podio.upsert import UpsertResult, upsert
from wchic.services.podio.workspaces import HEAD_OFFICE, WorkspaceRegistry, get_registry

logger = get_structlog_logger(__name__)

PODIO_DISABLED = "podio_disabled"
NOT_ROUTED = "not_routed"
UNKNOWN_WORKSPACE = "unknown_workspace"


@dataclass(frozen=True)
class PodioSyncResult:
    ok: bool
    action: Optional[str] = None
    reason: Optional[str] = None
    detail: Optional[str] = None
    results: List[UpsertResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "action": self.action,
            "reason": self.reason,
            "detail": self.detail,
            "results": [
                {
                    "workspace": r.workspace_key,
                    "app_id": r.app_id,
                    "action": r.action,
                    "item_id": r.item_id,
                    "dropped": [d.key for d in r.dropped],
                }
                for r in self.results
            ],
        }


_LEAD_FOR_SYNC = text(
    """
    SELECT
      l.id,
      l.external_id,
      l.phone_e164,
      l.status,
      l.franchise_id,
      l.created_at,
      le.cidade,
      le.estado,
      le.ibge_code,
      le.event_start_date,
      le.event_end_date,
      le.perfil_evento,
      le.pessoas_estimadas,
      le.decisor,
      f.franchise_name,
      f.podio_app_id
    FROM leads l
    LEFT JOIN lead_events le ON le.lead_id = l.id
    LEFT JOIN franchises f ON f.id = l.franchise_id
    WHERE l.id = :lead_id
    """
)

_SET_HEAD_OFFICE_ITEM = text(
    """
    UPDATE leads
    SET podio_item_id_franqueadora = :item_id,
        podio_synced_at = NOW(),
        updated_at = NOW()
    WHERE id = :lead_id
    """
)

_SET_FRANCHISE_ITEM = text(
    """
    UPDATE leads
    SET podio_item_id_franquia = :item_id,
        podio_synced_at = NOW(),
        updated_at = NOW()
    WHERE id = :lead_id
    """
)


async def sync_lead_to_podio(
    session: AsyncSession,
    lead_id: int,
    *,
    client: Optional[PodioClient] = None,
    registry: Optional[WorkspaceRegistry] = None,
    today: Optional[date] = None,
) -> PodioSyncResult:
    if not settings.podio_enabled:
        logger.warning("podio.sync.disabled", lead_id=lead_id)
        return PodioSyncResult(ok=False, reason=PODIO_DISABLED)

    row = (await session.execute(_LEAD_FOR_SYNC, {"lead_id": lead_id})).mappings().first()
    if row is None:
        raise LeadNotFoundError(lead_id)

    if not row["franchise_id"]:
        logger.info("podio.sync.not_routed", lead_id=lead_id)
        return PodioSyncResult(ok=False, reason=NOT_ROUTED)

    registry = registry or get_registry()
    workspace = registry.by_app_id(row["podio_app_id"])
    if workspace is None:
        detail = f"franchise_id={row['franchise_id']}, podio_app_id={row['podio_app_id']}"
        logger.warning(
            "podio.sync.unknown_workspace",
            lead_id=lead_id,
            franchise_id=row["franchise_id"],
            podio_app_id=row["podio_app_id"],
        )
        return PodioSyncResult(ok=False, reason=UNKNOWN_WORKSPACE, detail=detail)

    client = client or await get_podio_client()
    canonical = build_canonical(row, workspace.workspace_key, registry, today=today)

    logger.info(
        "podio.sync.start",
        lead_id=lead_id,
        external_id=canonical.external_id,
        workspace=workspace.workspace_key,
    )

    results: List[UpsertResult] = []

    head_office = await upsert(HEAD_OFFICE, canonical, client=client, registry=registry)
    results.append(head_office)
    await session.execute(_SET_HEAD_OFFICE_ITEM, {"item_id": head_office.item_id, "lead_id": lead_id})
    await session.commit()

    if workspace.workspace_key != HEAD_OFFICE:
        franchise = await upsert(workspace.workspace_key, canonical, client=client, registry=registry)
        results.append(franchise)
        await session.execute(_SET_FRANCHISE_ITEM, {"item_id": franchise.item_id, "lead_id": lead_id})
        await schedule_lead_jobs(
            session,
            lead_id=lead_id,
            created_at=row["created_at"],
            event_start=row["event_start_date"],
            event_end=row["event_end_date"],
        )
        await session.commit()

    logger.info(
        "podio.sync.completed",
        lead_id=lead_id,
        results=[(r.workspace_key, r.action, r.item_id) for r in results],
    )
    return PodioSyncResult(ok=True, action="synced", results=results)


async def sync_lead_safely(lead_id: int) -> Optional[PodioSyncResult]:
    """Background sync: failures are logged and alerted, never raised."""
    try:
        async with session_scope() as session:
            result = await sync_lead_to_podio(session, lead_id)
    except Exception as e:
        logger.error("podio.sync.failed", lead_id=lead_id, error=str(e)[:500])
        await alert(
            PODIO_SYNC_ERROR,
            "Podio sync falhou",
            {"lead_id": lead_id, "error": str(e)[:200]},
        )
        return None

    if result.reason == NOT_ROUTED:
        await alert(LEAD_NOT_ROUTED, "Lead sem franquia após qualificação", {"lead_id": lead_id})
    return result

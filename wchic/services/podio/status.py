# wchic/services/podio/status.py
"""
Status reconciliation between leads and Podio.

Outbound: a canonical status change is pushed as a single-field update to
every item the lead already has. Inbound: Podio ``item.update`` hooks are
read back through the emitting workspace's own label table.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from wchic.core.logging import get_structlog_logger
from wchic.db.session import session_scope
from wchic.services.leads import LeadNotFoundError, set_lead_status
from wchic.services.podio.client import PodioAPIError, PodioClient, category_label, get_podio_client
from wchic.services.podio.workspaces import (
    HEAD_OFFICE,
    CanonicalStatus,
    WorkspaceMapping,
    WorkspaceRegistry,
    get_registry,
)

logger = get_structlog_logger(__name__)

__all__ = [
    "CanonicalStatus",
    "HookOutcome",
    "StatusPushResult",
    "change_lead_status",
    "handle_podio_hook",
    "process_podio_hook",
    "push_status",
]

ITEM_UPDATE = "item.update"


@dataclass(frozen=True)
class StatusPushResult:
    workspace_key: str
    pushed: bool
    reason: Optional[str] = None
    item_id: Optional[int] = None


@dataclass(frozen=True)
class HookOutcome:
    action: str  # ignored | unchanged | updated | failed
    reason: Optional[str] = None
    lead_id: Optional[int] = None
    status: Optional[str] = None


_LEAD_ITEMS = text(
    """
    SELECT l.id, l.status, l.podio_item_id_franqueadora, l.podio_item_id_franquia, f.podio_app_id
    FROM leads l
    LEFT JOIN franchises f ON f.id = l.franchise_id
    WHERE l.id = :lead_id
    """
)

_LEAD_BY_ITEM = text(
    """
    SELECT l.id, l.status, l.podio_item_id_franqueadora, l.podio_item_id_franquia, f.podio_app_id
    FROM leads l
    LEFT JOIN franchises f ON f.id = l.franchise_id
    WHERE l.podio_item_id_franqueadora = :item_id OR l.podio_item_id_franquia = :item_id
    LIMIT 1
    """
)


def _lead_items(row: Mapping[str, Any], registry: WorkspaceRegistry) -> List[tuple]:
    """(workspace, item_id) pairs for every Podio item the lead already has."""
    items = []
    if row["podio_item_id_franqueadora"]:
        items.append((registry.head_office, int(row["podio_item_id_franqueadora"])))
    if row["podio_item_id_franquia"]:
        workspace = registry.by_app_id(row["podio_app_id"])
        if workspace is not None and workspace.workspace_key != HEAD_OFFICE:
            items.append((workspace, int(row["podio_item_id_franquia"])))
    return items


async def _push_one(
    client: PodioClient,
    workspace: WorkspaceMapping,
    item_id: int,
    status: CanonicalStatus,
    lead_id: int,
) -> StatusPushResult:
    key = workspace.workspace_key
    label = workspace.outbound_status(status)
    if label is None:
        logger.info("podio.status.unmapped", lead_id=lead_id, workspace=key, status=status.value)
        return StatusPushResult(key, pushed=False, reason="unmapped_status", item_id=item_id)

    option_id = workspace.option_id(workspace.status.field_key, label)
    try:
        await client.update_item_field(workspace, item_id, workspace.status.field_key, [option_id])
    except PodioAPIError as e:
        logger.error(
            "podio.status.push_failed",
            lead_id=lead_id,
            workspace=key,
            item_id=item_id,
            error=e.message,
            http_status=e.http_status,
        )
        return StatusPushResult(key, pushed=False, reason="podio_error", item_id=item_id)

    logger.info("podio.status.pushed", lead_id=lead_id, workspace=key, item_id=item_id, label=label)
    return StatusPushResult(key, pushed=True, item_id=item_id)


async def push_status(
    session: AsyncSession,
    lead_id: int,
    status: CanonicalStatus,
    *,
    client: Optional[PodioClient] = None,
    registry: Optional[WorkspaceRegistry] = None,
) -> List[StatusPushResult]:
    """Write ``status`` to the lead's existing items. Never creates an item."""
    status = CanonicalStatus(status)
    row = (await session.execute(_LEAD_ITEMS, {"lead_id": lead_id})).mappings().first()
    if row is None:
        raise LeadNotFoundError(lead_id)

    registry = registry or get_registry()
    items = _lead_items(row, registry)
    if not items:
        logger.info("podio.status.no_items", lead_id=lead_id)
        return []

    client = client or await get_podio_client()
    return [await _push_one(client, workspace, item_id, status, lead_id) for workspace, item_id in items]


async def change_lead_status(
    session: AsyncSession,
    lead_id: int,
    status: CanonicalStatus,
    *,
    client: Optional[PodioClient] = None,
    registry: Optional[WorkspaceRegistry] = None,
) -> List[StatusPushResult]:
    """Persist a new status locally, then push it to Podio."""
    status = CanonicalStatus(status)
    await set_lead_status(session, lead_id, status.value)
    await session.commit()
    logger.info("lead.status.changed", lead_id=lead_id, status=status.value)
    return await push_status(session, lead_id, status, client=client, registry=registry)


def _resolve_workspace(
    payload: Mapping[str, Any],
    row: Mapping[str, Any],
    item_id: int,
    registry: WorkspaceRegistry,
    workspace_hint: Optional[str],
) -> Optional[WorkspaceMapping]:
    app_id = payload.get("app_id")
    if app_id:
        return registry.by_app_id(app_id)
    if workspace_hint:
        return registry.get(workspace_hint) if workspace_hint in registry else None
    # No explicit source: infer from which stored item id matched.
    if row["podio_item_id_franqueadora"] and int(row["podio_item_id_franqueadora"]) == item_id:
        return registry.head_office
    return registry.by_app_id(row["podio_app_id"])


async def handle_podio_hook(
    session: AsyncSession,
    payload: Mapping[str, Any],
    *,
    workspace_hint: Optional[str] = None,
    client: Optional[PodioClient] = None,
    registry: Optional[WorkspaceRegistry] = None,
) -> HookOutcome:
    """Reconcile one Podio ``item.update`` event. Never raises."""
    try:
        return await _reconcile(
            session, payload, workspace_hint=workspace_hint, client=client, registry=registry
        )
    except Exception as e:
        logger.error("podio.hook.failed", payload=dict(payload), error=str(e)[:500])
        return HookOutcome(action="failed", reason=str(e)[:200])


async def _reconcile(
    session: AsyncSession,
    payload: Mapping[str, Any],
    *,
    workspace_hint: Optional[str],
    client: Optional[PodioClient],
    registry: Optional[WorkspaceRegistry],
) -> HookOutcome:
    hook_type = payload.get("type")
    if hook_type != ITEM_UPDATE:
        logger.info("podio.hook.ignored", type=hook_type)
        return HookOutcome(action="ignored", reason="unsupported_type")

    try:
        item_id = int(payload.get("item_id"))
    except (TypeError, ValueError):
        logger.warning("podio.hook.invalid_payload", payload=dict(payload))
        return HookOutcome(action="ignored", reason="invalid_payload")

    row = (await session.execute(_LEAD_BY_ITEM, {"item_id": item_id})).mappings().first()
    if row is None:
        logger.info("podio.hook.unknown_item", item_id=item_id)
        return HookOutcome(action="ignored", reason="unknown_item")

    lead_id = int(row["id"])
    registry = registry or get_registry()
    workspace = _resolve_workspace(payload, row, item_id, registry, workspace_hint)
    if workspace is None:
        logger.warning(
            "podio.hook.unknown_workspace",
            lead_id=lead_id,
            app_id=payload.get("app_id"),
            workspace_hint=workspace_hint,
        )
        return HookOutcome(action="ignored", reason="unknown_workspace", lead_id=lead_id)

    client = client or await get_podio_client()
    item = await client.get_item(workspace, item_id)
    label = category_label(item, workspace.status.field_key)
    if not label:
        logger.info("podio.hook.status_empty", lead_id=lead_id, workspace=workspace.workspace_key)
        return HookOutcome(action="ignored", reason="status_empty", lead_id=lead_id)

    status = workspace.inbound_status(label)
    if status is None:
        logger.warning(
            "podio.hook.unmapped_label",
            lead_id=lead_id,
            workspace=workspace.workspace_key,
            label=label,
        )
        return HookOutcome(action="ignored", reason="unmapped_label", lead_id=lead_id)

    if status.value == row["status"]:
        return HookOutcome(action="unchanged", lead_id=lead_id, status=status.value)

    await set_lead_status(session, lead_id, status.value)
    await session.commit()
    logger.info(
        "podio.hook.status_updated",
        lead_id=lead_id,
        workspace=workspace.workspace_key,
        previous=row["status"],
        status=status.value,
    )
    return HookOutcome(action="updated", lead_id=lead_id, status=status.value)


async def process_podio_hook(payload: Dict[str, Any], workspace_hint: Optional[str] = None) -> HookOutcome:
    """Background entry point used after the webhook has been acknowledged."""
    async with session_scope() as session:
        outcome = await handle_podio_hook(session, payload, workspace_hint=workspace_hint)
    logger.info("podio.hook.processed", action=outcome.action, reason=outcome.reason, lead_id=outcome.lead_id)
    return outcome

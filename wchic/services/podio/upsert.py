# wchic/services/podio/upsert.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from wchic.core.logging import get_structlog_logger
from wchic.services.podio.canonical import CanonicalLead
from wchic.services.podio.client import PodioAPIError, PodioClient
from wchic.services.podio.translator import DroppedField, translate_fields
from wchic.services.podio.workspaces import WorkspaceRegistry

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class UpsertResult:
    workspace_key: str
    app_id: int
    action: str  # created | updated
    item_id: int
    dropped: List[DroppedField] = field(default_factory=list)


async def upsert(
    workspace_key: str,
    canonical: CanonicalLead,
    *,
    client: PodioClient,
    registry: WorkspaceRegistry,
) -> UpsertResult:
    """Create or update the item keyed by ``canonical.external_id`` in one workspace.

    Only a 404 on the external-id lookup leads to a create; every other
    failure propagates unchanged.
    """
    workspace = registry.get(workspace_key)
    translation = translate_fields(workspace, canonical)

    existing: Optional[dict] = None
    try:
        existing = await client.get_item_by_external_id(workspace, canonical.external_id)
    except PodioAPIError as e:
        if not e.is_not_found:
            raise

    if existing:
        item_id = int(existing["item_id"])
        await client.update_item(workspace, item_id, canonical.external_id, translation.fields)
        action = "updated"
    else:
        item_id = await client.create_item(workspace, canonical.external_id, translation.fields)
        action = "created"

    logger.info(
        f"podio.upsert.{action}",
        workspace=workspace_key,
        app_id=workspace.app_id,
        item_id=item_id,
        external_id=canonical.external_id,
        fields=len(translation.fields),
        dropped=translation.dropped_keys(),
    )

    return UpsertResult(
        workspace_key=workspace_key,
        app_id=workspace.app_id,
        action=action,
        item_id=item_id,
        dropped=translation.dropped,
    )

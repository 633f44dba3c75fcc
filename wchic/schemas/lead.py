from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from wchic.services.podio.workspaces import CanonicalStatus


class LeadSummary(BaseModel):
    id: int
    external_id: str
    phone_e164: str
    status: str
    franchise_id: Optional[int] = None
    franchise_name: Optional[str] = None
    podio_item_id_franqueadora: Optional[int] = None
    podio_item_id_franquia: Optional[int] = None
    podio_synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    cidade: Optional[str] = None
    estado: Optional[str] = None
    ibge_code: Optional[str] = None
    event_start_date: Optional[date] = None
    perfil_evento: Optional[str] = None
    pessoas_estimadas: Optional[str] = None


class LeadList(BaseModel):
    total: int
    limit: int
    offset: int
    items: List[LeadSummary]


class StatusUpdate(BaseModel):
    status: CanonicalStatus


class StatusPushOut(BaseModel):
    workspace_key: str
    pushed: bool
    reason: Optional[str] = None
    item_id: Optional[int] = None


class StatusUpdateResponse(BaseModel):
    lead_id: int
    status: CanonicalStatus
    podio: List[StatusPushOut]


class SyncResponse(BaseModel):
    ok: bool
    action: Optional[str] = None
    reason: Optional[str] = None
    detail: Optional[str] = None
    results: List[Dict[str, Any]] = []

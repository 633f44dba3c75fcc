# wchic/services/podio/canonical.py
"""
Vendor-agnostic lead record.

The canonical record is keyed by Podio external field keys. Semantic values
that different workspaces store under different keys are written once per
alias (see ``FIELD_ALIASES``); the translator later drops every alias a given
workspace does not expose.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from wchic.services.normalization import expand_state
from wchic.services.podio.workspaces import HEAD_OFFICE, WorkspaceRegistry

# Semantic key -> every Podio external key that carries it, across workspaces.
# Keep this table the single place where an alias is added.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "city": ("cidade", "cidade-do-evento"),
    "state": ("estado", "categoria"),
    "ibge_code": ("codigo-ibge-2", "codigo-ibge"),
    "event_date": ("data-do-evento",),
    "request_date": ("data-do-1o-contato",),
    "event_profile": ("perfil-do-evento-2", "4-perfil-do-evento-7-dias"),
    "guest_count": ("publico-do-evento-qtde-pessoas",),
    "decision_maker": ("decisor",),
}

DEFAULT_INTEREST = "Evento"
DEFAULT_ORIGIN = "WhatsApp"
# Status moves after creation go through push_status only.
DEFAULT_STATUS = "Novo"


@dataclass(frozen=True)
class CanonicalLead:
    external_id: str
    fields: Mapping[str, Any] = field(default_factory=dict)


def podio_date(value: Union[date, datetime, str]) -> Dict[str, str]:
    """Podio date wrapper: ``{"start": "YYYY-MM-DD 00:00:00"}``."""
    if isinstance(value, datetime):
        day = value.date().isoformat()
    elif isinstance(value, date):
        day = value.isoformat()
    else:
        day = str(value).split("T")[0].strip()
    return {"start": f"{day} 00:00:00"}


def _day(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return podio_date(value)["start"][:10]


def build_title(row: Mapping[str, Any]) -> str:
    phone = row.get("phone_e164") or "sem-telefone"
    title = f"Lead WA {phone}"
    if row.get("cidade"):
        title += f" — {row['cidade']}"
    event_day = _day(row.get("event_start_date"))
    if event_day:
        title += f" ({event_day})"
    return title


def _put_alias(fields: Dict[str, Any], semantic_key: str, value: Any) -> None:
    for external_key in FIELD_ALIASES[semantic_key]:
        fields[external_key] = value


def build_canonical(
    row: Mapping[str, Any],
    workspace_key: str,
    registry: WorkspaceRegistry,
    *,
    today: Optional[date] = None,
) -> CanonicalLead:
    """Assemble the canonical record for a routed lead.

    ``row`` is the joined lead/lead_event/franchise row; ``workspace_key`` is
    the workspace the lead was routed to.
    """
    today_start = podio_date(today or date.today())

    fields: Dict[str, Any] = {
        "title": build_title(row),
        "id-externo": row["external_id"],
        "telefone": row.get("phone_e164") or "",
        "status": DEFAULT_STATUS,
        "interesse": DEFAULT_INTEREST,
        "origem-do-contato": DEFAULT_ORIGIN,
        "data-do-contato": today_start,
    }

    # Head-office only: which franchise area the lead was sent to.
    if workspace_key != HEAD_OFFICE:
        routed = registry.get(workspace_key)
        if routed.area_label:
            fields["area-da-franquia"] = routed.area_label
        fields["encaminhado"] = "Sim"

    if row.get("cidade"):
        _put_alias(fields, "city", row["cidade"])
    if row.get("estado"):
        _put_alias(fields, "state", expand_state(row["estado"]))
    if row.get("ibge_code"):
        _put_alias(fields, "ibge_code", str(row["ibge_code"]))

    if row.get("event_start_date"):
        _put_alias(fields, "event_date", podio_date(row["event_start_date"]))
        _put_alias(fields, "request_date", today_start)

    if row.get("perfil_evento"):
        _put_alias(fields, "event_profile", row["perfil_evento"])
    if row.get("pessoas_estimadas"):
        _put_alias(fields, "guest_count", str(row["pessoas_estimadas"]))
    if isinstance(row.get("decisor"), bool):
        _put_alias(fields, "decision_maker", "Sim" if row["decisor"] else "Não")

    return CanonicalLead(external_id=row["external_id"], fields=fields)

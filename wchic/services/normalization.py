from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from typing import Optional, Union

EXTERNAL_ID_PREFIX = "wchic:wa"

_E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")
_ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

UF_MAP = {
    "AC": "Acre", "AL": "Alagoas", "AP": "Amapá", "AM": "Amazonas",
    "BA": "Bahia", "CE": "Ceará", "DF": "Distrito Federal", "ES": "Espírito Santo",
    "GO": "Goiás", "MA": "Maranhão", "MT": "Mato Grosso", "MS": "Mato Grosso do Sul",
    "MG": "Minas Gerais", "PA": "Pará", "PB": "Paraíba", "PR": "Paraná",
    "PE": "Pernambuco", "PI": "Piauí", "RJ": "Rio de Janeiro", "RN": "Rio Grande do Norte",
    "RS": "Rio Grande do Sul", "RO": "Rondônia", "RR": "Roraima", "SC": "Santa Catarina",
    "SP": "São Paulo", "SE": "Sergipe", "TO": "Tocantins",
}


class NormalizationError(ValueError):
    """Input that cannot be normalized."""


def fold(value: str) -> str:
    """Lowercase, accent-free form used for name comparisons."""
    decomposed = unicodedata.normalize("NFD", value.strip().lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_phone_br(phone: Optional[str]) -> Optional[str]:
    """Brazilian phone -> E.164 (``+55...``); numbers already carrying 55 keep it."""
    if not phone:
        return None

    digits = re.sub(r"\D", "", phone)
    if not digits:
        return None

    candidate = f"+{digits}" if digits.startswith("55") else f"+55{digits}"
    if not _E164_PATTERN.match(candidate):
        return None
    return candidate


def normalize_event_date(value: Union[str, date, None]) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    day = str(value).strip().split("T")[0]
    if not _ISO_DATE_PATTERN.match(day):
        raise NormalizationError(f"event date must be YYYY-MM-DD, got {value!r}")
    date.fromisoformat(day)
    return day


def build_external_id(phone_e164: str, event_date: Union[str, date, None] = None) -> str:
    """``wchic:wa:{phone}[:{YYYY-MM-DD}]``."""
    day = normalize_event_date(event_date)
    external_id = f"{EXTERNAL_ID_PREFIX}:{phone_e164}"
    if day:
        external_id += f":{day}"
    return external_id


def expand_state(value: str) -> str:
    """UF abbreviation -> full state name; anything else is returned trimmed."""
    stripped = value.strip()
    return UF_MAP.get(stripped.upper(), stripped)


def uf_for_state(value: Optional[str]) -> Optional[str]:
    """Full state name or UF -> UF."""
    if not value:
        return None
    stripped = value.strip()
    if stripped.upper() in UF_MAP:
        return stripped.upper()
    folded = fold(stripped)
    for uf, name in UF_MAP.items():
        if fold(name) == folded:
            return uf
    return None

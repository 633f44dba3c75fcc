# wchic/services/podio/translator.py
"""
Canonical record -> Podio ``fields`` payload for one workspace.

Translation is best-effort: a canonical key the workspace does not expose, or
a category label missing from its option table, is dropped and reported in
``TranslationResult.dropped`` instead of failing the write.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from wchic.core.logging import get_structlog_logger
from wchic.services.podio.canonical import CanonicalLead
from wchic.services.podio.workspaces import WorkspaceMapping

logger = get_structlog_logger(__name__)

UNMAPPED_FIELD = "unmapped_field"
UNKNOWN_OPTION = "unknown_option"
UNSUPPORTED_VALUE = "unsupported_value"


@dataclass(frozen=True)
class DroppedField:
    key: str
    reason: str
    value: Any = None


@dataclass(frozen=True)
class TranslationResult:
    fields: Dict[str, Any]
    dropped: List[DroppedField] = field(default_factory=list)

    def dropped_keys(self) -> List[str]:
        return [d.key for d in self.dropped]


def title_fallback(external_id: str) -> str:
    return f"Lead WhatsApp - {external_id}"


def _resolve_category(
    mapping: WorkspaceMapping,
    key: str,
    value: Any,
    dropped: List[DroppedField],
) -> Optional[Any]:
    options = mapping.options_for(key)

    if isinstance(value, bool):
        dropped.append(DroppedField(key, UNSUPPORTED_VALUE, value))
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        option_id = options.get(value)
        if option_id is None:
            dropped.append(DroppedField(key, UNKNOWN_OPTION, value))
        return option_id
    if isinstance(value, (list, tuple)):
        ids = []
        for label in value:
            if isinstance(label, int) and not isinstance(label, bool):
                ids.append(label)
            elif label in options:
                ids.append(options[label])
            else:
                dropped.append(DroppedField(key, UNKNOWN_OPTION, label))
        return ids or None

    dropped.append(DroppedField(key, UNSUPPORTED_VALUE, value))
    return None


def translate_fields(mapping: WorkspaceMapping, canonical: CanonicalLead) -> TranslationResult:
    out: Dict[str, Any] = {}
    dropped: List[DroppedField] = []
    title_key = mapping.title_field_key

    for key, value in canonical.fields.items():
        descriptor = mapping.fields.get(key)
        if descriptor is None:
            # "title" feeds the title field below whatever that field is keyed as.
            if not (key == "title" and title_key):
                dropped.append(DroppedField(key, UNMAPPED_FIELD))
            continue

        if descriptor.type == "category":
            resolved = _resolve_category(mapping, key, value, dropped)
            if resolved is not None:
                out[key] = resolved
        else:
            out[key] = value

    if title_key and not str(out.get(title_key) or "").strip():
        title = canonical.fields.get("title")
        if isinstance(title, str) and title.strip():
            out[title_key] = title
        else:
            out[title_key] = title_fallback(canonical.external_id)

    for drop in dropped:
        if drop.reason == UNKNOWN_OPTION:
            # Usually means the option was renamed in Podio and the mapping file is stale.
            logger.warning(
                "podio.translate.unknown_option",
                workspace=mapping.workspace_key,
                field=drop.key,
                label=drop.value,
            )

    return TranslationResult(fields=out, dropped=dropped)

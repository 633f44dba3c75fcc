# wchic/services/podio/__init__.py
"""
Podio integration: workspace schemas, field translation, upsert and status
reconciliation across the head office and franchise apps.
"""

from wchic.services.podio.canonical import FIELD_ALIASES, CanonicalLead, build_canonical
from wchic.services.podio.translator import DroppedField, TranslationResult, translate_fields
from wchic.services.podio.workspaces import (
    HEAD_OFFICE,
    CanonicalStatus,
    WorkspaceConfigError,
    WorkspaceMapping,
    WorkspaceRegistry,
    get_registry,
    load_registry,
)

__all__ = [
    "FIELD_ALIASES",
    "CanonicalLead",
    "build_canonical",
    "DroppedField",
    "TranslationResult",
    "translate_fields",
    "HEAD_OFFICE",
    "CanonicalStatus",
    "WorkspaceConfigError",
    "WorkspaceMapping",
    "WorkspaceRegistry",
    "get_registry",
    "load_registry",
]

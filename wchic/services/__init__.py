# wchic/services/__init__.py
"""
Business logic services organized by domain functionality.
"""

from wchic.services.leads import (
    LeadNotFoundError,
    LeadRecord,
    find_or_create_lead,
    insert_lead_message,
    upsert_lead_event,
)
from wchic.services.normalization import (
    NormalizationError,
    build_external_id,
    normalize_event_date,
    normalize_phone_br,
)

__all__ = [
    # Lead repository
    "LeadNotFoundError",
    "LeadRecord",
    "find_or_create_lead",
    "insert_lead_message",
    "upsert_lead_event",
    # Normalization
    "NormalizationError",
    "build_external_id",
    "normalize_event_date",
    "normalize_phone_br",
]

# wchic/models/__init__.py
"""
SQLAlchemy ORM models for database entities.
"""

from wchic.models.franchise import Franchise, FranchiseTerritory
from wchic.models.job import Job, JobLog
from wchic.models.lead import LEAD_STATUSES, Lead, LeadEvent, LeadMessage

__all__ = [
    "Franchise",
    "FranchiseTerritory",
    "Job",
    "JobLog",
    "LEAD_STATUSES",
    "Lead",
    "LeadEvent",
    "LeadMessage",
]

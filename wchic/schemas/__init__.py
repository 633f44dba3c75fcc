# wchic/schemas/__init__.py
"""
Pydantic schemas for request/response validation and serialization.
"""

from wchic.schemas.auth import DashboardLoginRequest, LoginRequest, TokenResponse
from wchic.schemas.franchise import FranchiseIn, FranchiseOut, FranchiseUpdate, TerritoryIn
from wchic.schemas.intake import IntakeRequest, IntakeResponse
from wchic.schemas.lead import LeadList, StatusUpdate, StatusUpdateResponse, SyncResponse

__all__ = [
    "DashboardLoginRequest",
    "LoginRequest",
    "TokenResponse",
    "FranchiseIn",
    "FranchiseOut",
    "FranchiseUpdate",
    "TerritoryIn",
    "IntakeRequest",
    "IntakeResponse",
    "LeadList",
    "StatusUpdate",
    "StatusUpdateResponse",
    "SyncResponse",
]

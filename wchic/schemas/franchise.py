from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TerritoryIn(BaseModel):
    cidade: str = Field(min_length=1)
    estado: str = Field(min_length=2)
    ibge_code: Optional[str] = None
    territory_status: str = Field(default="ativo", pattern="^(ativo|inativo|fallback)$")


class TerritoryOut(TerritoryIn):
    model_config = ConfigDict(from_attributes=True)

    id: int


class FranchiseIn(BaseModel):
    franchise_name: str = Field(min_length=1, max_length=200)
    whatsapp_phone: Optional[str] = None
    podio_app_id: Optional[int] = None
    is_active: bool = True
    territories: List[TerritoryIn] = []


class FranchiseUpdate(BaseModel):
    franchise_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    whatsapp_phone: Optional[str] = None
    podio_app_id: Optional[int] = None
    is_active: Optional[bool] = None


class FranchiseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    franchise_name: str
    whatsapp_phone: Optional[str] = None
    podio_app_id: Optional[int] = None
    is_active: bool
    workspace_key: Optional[str] = None
    territories: List[TerritoryOut] = []

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class IntakeRequest(BaseModel):
    telefone: str = Field(min_length=8)
    cidade: str = Field(min_length=1)
    estado: str = Field(min_length=2)
    mensagem: Optional[str] = None
    event_date: Optional[str] = None

    @field_validator("cidade", "estado")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class RoutedTo(BaseModel):
    franchise_id: int
    franchise_name: Optional[str] = None
    podio_app_id: Optional[int] = None


class IntakeResponse(BaseModel):
    ok: bool = True
    lead_id: int
    external_id: str
    created: bool
    ibge_code: Optional[str] = None
    routed_to: Optional[RoutedTo] = None

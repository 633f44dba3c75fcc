# wchic/models/franchise.py
from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import relationship

from wchic.db.base import Base


class Franchise(Base):
    __tablename__ = "franchises"

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    franchise_name = Column(String(200), nullable=False)
    whatsapp_phone = Column(String(32), nullable=True)
    # Podio app of the franchise workspace; resolved to a workspace key at sync time.
    podio_app_id = Column(BigInteger, nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, server_default="true")

    territories = relationship(
        "FranchiseTerritory",
        back_populates="franchise",
        cascade="all, delete-orphan",
    )


class FranchiseTerritory(Base):
    __tablename__ = "franchise_territories"

    id = Column(Integer, primary_key=True)
    franchise_id = Column(ForeignKey("franchises.id", ondelete="CASCADE"), nullable=False, index=True)
    cidade = Column(String(128), nullable=False)
    estado = Column(String(64), nullable=False)
    ibge_code = Column(String(16), nullable=True)
    # ativo | inativo | fallback
    territory_status = Column(String(16), nullable=False, server_default="ativo")

    franchise = relationship("Franchise", back_populates="territories")

    __table_args__ = (
        Index("idx_territories_ibge_code", "ibge_code"),
        Index("idx_territories_cidade_estado", "cidade", "estado"),
    )

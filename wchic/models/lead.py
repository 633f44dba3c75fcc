# wchic/models/lead.py
from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from wchic.db.base import Base

LEAD_STATUSES = (
    "new",
    "routed",
    "incomplete",
    "error",
    "abandoned",
    "quoted",
    "no_response",
    "rejected",
    "cancelled",
    "contacted",
    "closed",
)


class Lead(Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # wchic:wa:{phone_e164}[:{YYYY-MM-DD}]; idempotency key in every Podio workspace.
    external_id = Column(String(128), nullable=False, unique=True)
    phone_e164 = Column(String(20), nullable=False)
    source = Column(String(50), nullable=False, server_default="whatsapp")
    status = Column(String(20), nullable=False, server_default="new")

    # Set by the routing trigger once lead_events.ibge_code is populated.
    franchise_id = Column(ForeignKey("franchises.id", ondelete="SET NULL"), nullable=True, index=True)
    territory_status = Column(String(16), nullable=True)
    routed_at = Column(DateTime(timezone=True), nullable=True)

    podio_item_id_franqueadora = Column(BigInteger, nullable=True)
    podio_item_id_franquia = Column(BigInteger, nullable=True)
    podio_synced_at = Column(DateTime(timezone=True), nullable=True)

    franchise = relationship("Franchise")
    events = relationship("LeadEvent", back_populates="lead", cascade="all, delete-orphan")
    messages = relationship("LeadMessage", back_populates="lead", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_leads_phone", "phone_e164"),
        Index("idx_leads_status", "status"),
        Index("idx_leads_created_at", "created_at"),
        Index("idx_leads_podio_item_franqueadora", "podio_item_id_franqueadora"),
        Index("idx_leads_podio_item_franquia", "podio_item_id_franquia"),
        CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in LEAD_STATUSES) + ")",
            name="lead_status_valid",
        ),
    )


class LeadEvent(Base):
    __tablename__ = "lead_events"

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    lead_id = Column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, unique=True)
    cidade = Column(String(128))
    estado = Column(String(64))
    ibge_code = Column(String(16))
    event_start_date = Column(Date)
    event_end_date = Column(Date)
    perfil_evento = Column(String(64))
    pessoas_estimadas = Column(String(32))
    decisor = Column(Boolean)

    lead = relationship("Lead", back_populates="events")


class LeadMessage(Base):
    __tablename__ = "lead_messages"

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    lead_id = Column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    # user | agent | system
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    stage = Column(String(32))

    lead = relationship("Lead", back_populates="messages")

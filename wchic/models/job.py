# wchic/models/job.py
from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from wchic.db.base import Base


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # SLA_24H | SLA_7D | POST_EVENTO
    type = Column(String(32), nullable=False)
    lead_id = Column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    run_at = Column(DateTime(timezone=True), nullable=False)
    # pending | running | done | skipped
    status = Column(String(16), nullable=False, server_default="pending")
    attempts = Column(Integer, nullable=False, server_default="0")
    last_error = Column(Text)
    claim_token = Column(String(64))
    claimed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("lead_id", "type", name="uq_jobs_lead_type"),
        Index("idx_jobs_status_run_at", "status", "run_at"),
    )


class JobLog(Base):
    __tablename__ = "job_logs"

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    job_id = Column(ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    message = Column(Text, nullable=False)

from datetime import date

from wchic.db.base import Base
from wchic.models import LEAD_STATUSES, Franchise, Job, LeadEvent
from wchic.services.podio.workspaces import CanonicalStatus


def test_relational_tables_are_declared():
    assert set(Base.metadata.tables) == {
        "franchises", "franchise_territories", "leads", "lead_events", "lead_messages", "jobs", "job_logs",
    }


def test_lead_status_constraint_matches_canonical_statuses():
    assert set(LEAD_STATUSES) == {s.value for s in CanonicalStatus}


def test_one_job_per_lead_and_type():
    constraints = {c.name for c in Job.__table__.constraints}
    assert "uq_jobs_lead_type" in constraints


def test_to_dict_serializes_dates():
    event = LeadEvent(lead_id=7, cidade="Campinas", event_start_date=date(2025, 10, 5))
    assert event.to_dict(exclude=["id", "created_at", "updated_at"])["event_start_date"] == "2025-10-05"


def test_update_ignores_unknown_attributes():
    franchise = Franchise(franchise_name="WChic Campinas", podio_app_id=10777978)
    franchise.update(franchise_name="WChic Campinas e Região", unknown="x")
    assert franchise.franchise_name == "WChic Campinas e Região"
    assert not hasattr(franchise, "unknown")

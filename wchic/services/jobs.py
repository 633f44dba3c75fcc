# wchic/services/jobs.py
"""
Scheduled follow-up jobs for routed leads.

Jobs are created once per (lead, type) after the first successful franchise
sync and polled by ``scheduler_loop``. Each poll claims a batch atomically
with ``FOR UPDATE SKIP LOCKED`` so concurrent workers never run the same job.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from wchic.core.config import settings
from wchic.core.logging import get_structlog_logger
from wchic.db.session import session_scope
from wchic.services.podio.client import PodioClient, category_label, field_is_filled, get_podio_client
from wchic.services.podio.workspaces import CanonicalStatus, WorkspaceRegistry, get_registry
from wchic.services.whatsapp import send_text

logger = get_structlog_logger(__name__)

SLA_24H = "SLA_24H"
SLA_7D = "SLA_7D"
POST_EVENTO = "POST_EVENTO"
JOB_TYPES = (SLA_24H, SLA_7D, POST_EVENTO)

# Statuses that still count as "nobody has talked to the client yet".
UNCONTACTED_STATUSES = (CanonicalStatus.NEW, CanonicalStatus.ROUTED)

Sender = Callable[[str, str, str], Awaitable[Any]]


@dataclass(frozen=True)
class JobOutcome:
    job_id: int
    job_type: str
    status: str
    message: str


def _as_datetime(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


_INSERT_JOB = text(
    """
    INSERT INTO jobs (type, lead_id, run_at)
    VALUES (:type, :lead_id, :run_at)
    ON CONFLICT (lead_id, type) DO NOTHING
    """
)


async def schedule_lead_jobs(
    session: AsyncSession,
    *,
    lead_id: int,
    created_at: Union[date, datetime],
    event_start: Optional[Union[date, datetime]] = None,
    event_end: Optional[Union[date, datetime]] = None,
) -> List[str]:
    """Create the follow-up jobs of a lead. Existing (lead, type) pairs are left alone."""
    planned: Dict[str, datetime] = {SLA_24H: _as_datetime(created_at) + timedelta(hours=24)}
    if event_start:
        planned[SLA_7D] = _as_datetime(event_start) - timedelta(days=7)
    if event_end or event_start:
        planned[POST_EVENTO] = _as_datetime(event_end or event_start) + timedelta(hours=24)

    for job_type, run_at in planned.items():
        await session.execute(_INSERT_JOB, {"type": job_type, "lead_id": lead_id, "run_at": run_at})

    logger.info("jobs.scheduled", lead_id=lead_id, types=list(planned))
    return list(planned)


# Running rows past the claim timeout belong to a worker that died mid-batch.
_CLAIM_JOBS = text(
    """
    UPDATE jobs
    SET status = 'running',
        claim_token = :claim_token,
        claimed_at = NOW(),
        updated_at = NOW()
    WHERE id IN (
      SELECT id FROM jobs
      WHERE (status = 'pending' AND run_at <= NOW())
         OR (status = 'running' AND claimed_at < NOW() - make_interval(secs => :claim_timeout))
      ORDER BY run_at ASC
      LIMIT :batch_size
      FOR UPDATE SKIP LOCKED
    )
    RETURNING id, type, lead_id, attempts
    """
)


async def claim_due_jobs(
    session: AsyncSession,
    *,
    batch_size: int,
    claim_token: Optional[str] = None,
) -> List[Dict[str, Any]]:
    token = claim_token or uuid.uuid4().hex
    params = {
        "claim_token": token,
        "batch_size": batch_size,
        "claim_timeout": settings.job_claim_timeout_seconds,
    }
    res = await session.execute(_CLAIM_JOBS, params)
    jobs = sorted((dict(row) for row in res.mappings().all()), key=lambda j: j["id"])
    await session.commit()
    return jobs


async def _log_job(session: AsyncSession, job_id: int, message: str) -> None:
    await session.execute(
        text("INSERT INTO job_logs (job_id, message) VALUES (:job_id, :message)"),
        {"job_id": job_id, "message": message},
    )


async def _finish_job(session: AsyncSession, job_id: int, status: str) -> None:
    await session.execute(
        text(
            """
            UPDATE jobs
            SET status = :status, last_error = NULL, claim_token = NULL, updated_at = NOW()
            WHERE id = :job_id
            """
        ),
        {"job_id": job_id, "status": status},
    )


async def _retry_job(session: AsyncSession, job_id: int, error: str) -> None:
    await session.execute(
        text(
            """
            UPDATE jobs
            SET status = 'pending',
                attempts = attempts + 1,
                run_at = NOW() + make_interval(secs => :delay),
                last_error = :error,
                claim_token = NULL,
                updated_at = NOW()
            WHERE id = :job_id
            """
        ),
        {"job_id": job_id, "delay": settings.job_retry_delay_seconds, "error": error[:1000]},
    )


_LEAD_FOR_JOB = text(
    """
    SELECT l.id, l.podio_item_id_franquia, f.whatsapp_phone, f.podio_app_id
    FROM leads l
    LEFT JOIN franchises f ON f.id = l.franchise_id
    WHERE l.id = :lead_id
    """
)


async def run_job(
    session: AsyncSession,
    job: Dict[str, Any],
    *,
    client: PodioClient,
    registry: WorkspaceRegistry,
    sender: Sender,
) -> JobOutcome:
    """Evaluate one claimed job against the franchise item and nudge the operator when due."""
    job_id, job_type = int(job["id"]), job["type"]

    lead = (await session.execute(_LEAD_FOR_JOB, {"lead_id": job["lead_id"]})).mappings().first()
    if lead is None or not lead["whatsapp_phone"]:
        return JobOutcome(job_id, job_type, "skipped", "No franchise phone configured")
    if not lead["podio_item_id_franquia"]:
        return JobOutcome(job_id, job_type, "skipped", "No Podio item id for franchise")

    workspace = registry.by_app_id(lead["podio_app_id"])
    if workspace is None:
        return JobOutcome(job_id, job_type, "skipped", f"No workspace for app {lead['podio_app_id']}")

    item = await client.get_item(workspace, int(lead["podio_item_id_franquia"]))
    status_key = workspace.status.field_key

    if job_type == SLA_24H:
        label = category_label(item, status_key)
        current = workspace.inbound_status(label) if label else None
        if label is None or current in UNCONTACTED_STATUSES:
            notice = f"SLA 24h: lead {lead['id']} ainda não está como contatado no Podio."
        else:
            return JobOutcome(job_id, job_type, "done", "SLA 24h ok")
    elif job_type == SLA_7D:
        if field_is_filled(item, status_key):
            return JobOutcome(job_id, job_type, "done", "SLA 7d ok")
        notice = f"SLA 7 dias: evento do lead {lead['id']} sem etapa/status no Podio."
    elif job_type == POST_EVENTO:
        missing = [key for key in workspace.post_event_fields if not field_is_filled(item, key)]
        if not missing:
            return JobOutcome(job_id, job_type, "done", "Pós-evento ok")
        notice = f"Pós-evento: campos pendentes ({len(missing)}) para lead {lead['id']}."
    else:
        return JobOutcome(job_id, job_type, "skipped", f"Unknown job type {job_type}")

    await sender(settings.whatsapp_ops_phone_number_id, lead["whatsapp_phone"], notice)
    logger.info("jobs.nudge.sent", job_id=job_id, job_type=job_type, lead_id=lead["id"])
    return JobOutcome(job_id, job_type, "done", f"{job_type} cobrança enviada")


async def run_due_jobs(
    session: AsyncSession,
    *,
    client: Optional[PodioClient] = None,
    registry: Optional[WorkspaceRegistry] = None,
    sender: Optional[Sender] = None,
    batch_size: Optional[int] = None,
) -> List[JobOutcome]:
    jobs = await claim_due_jobs(session, batch_size=batch_size or settings.job_batch_size)
    if not jobs:
        return []

    sender = sender or send_text
    client = client or await get_podio_client()
    registry = registry or get_registry()

    outcomes: List[JobOutcome] = []
    for job in jobs:
        try:
            outcome = await run_job(session, job, client=client, registry=registry, sender=sender)
        except Exception as e:
            logger.error("jobs.failed", job_id=job["id"], job_type=job["type"], error=str(e))
            # A database error leaves the transaction aborted.
            await session.rollback()
            await _retry_job(session, int(job["id"]), str(e))
            await session.commit()
            outcomes.append(JobOutcome(int(job["id"]), job["type"], "pending", str(e)))
            continue

        await _log_job(session, outcome.job_id, outcome.message)
        await _finish_job(session, outcome.job_id, outcome.status)
        await session.commit()
        outcomes.append(outcome)

    logger.info("jobs.batch.completed", claimed=len(jobs), outcomes=[o.status for o in outcomes])
    return outcomes


async def run_once() -> List[JobOutcome]:
    async with session_scope() as session:
        return await run_due_jobs(session)


async def scheduler_loop(stop_event: Optional[asyncio.Event] = None) -> None:
    """Poll due jobs until ``stop_event`` is set; a failed tick never stops the loop."""
    stop_event = stop_event or asyncio.Event()
    interval = settings.job_poll_interval_seconds
    logger.info("jobs.scheduler.started", interval_seconds=interval)

    while not stop_event.is_set():
        try:
            await run_once()
        except Exception as e:
            logger.error("jobs.scheduler.tick_failed", error=str(e))
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue

    logger.info("jobs.scheduler.stopped")

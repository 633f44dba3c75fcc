# wchic/routes/intake.py
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from wchic.core.exceptions import ValidationError
from wchic.core.logging import get_structlog_logger
from wchic.db.session import get_session
from wchic.schemas.intake import IntakeRequest, IntakeResponse, RoutedTo
from wchic.services import leads
from wchic.services.ibge import find_ibge_code
from wchic.services.normalization import (
    NormalizationError,
    build_external_id,
    expand_state,
    normalize_event_date,
    normalize_phone_br,
    uf_for_state,
)
from wchic.services.podio.sync import sync_lead_safely

router = APIRouter(prefix="/gateway", tags=["intake"])


@router.post(
    "/intake",
    response_model=IntakeResponse,
    status_code=status.HTTP_200_OK,
    summary="Lead-first intake",
)
async def intake(
    payload: IntakeRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
) -> IntakeResponse:
    logger = get_structlog_logger().bind(route="/gateway/intake")

    phone = normalize_phone_br(payload.telefone)
    if phone is None:
        raise ValidationError("Invalid phone number", code="invalid_phone", details={"telefone": payload.telefone})
    try:
        event_day = normalize_event_date(payload.event_date)
    except (NormalizationError, ValueError) as e:
        raise ValidationError(str(e), code="invalid_event_date", details={"event_date": payload.event_date})

    external_id = build_external_id(phone, event_day)
    lead = await leads.find_or_create_lead(session, external_id=external_id, phone_e164=phone)

    if payload.mensagem:
        await leads.insert_lead_message(
            session, lead_id=lead.id, role="user", content=payload.mensagem, stage="intake"
        )

    municipality = await find_ibge_code(payload.cidade, uf_for_state(payload.estado))
    ibge_code = municipality.ibge_code if municipality else None

    await leads.upsert_lead_event(
        session,
        lead_id=lead.id,
        cidade=municipality.cidade if municipality else payload.cidade,
        estado=expand_state(payload.estado),
        ibge_code=ibge_code,
        event_start_date=date.fromisoformat(event_day) if event_day else None,
    )

    # The ibge_code trigger routes the lead; the territory table is the fallback.
    routing = await leads.get_lead_routing(session, lead.id)
    if routing is None:
        franchise = await leads.find_franchise_for_territory(
            session, cidade=payload.cidade, estado=payload.estado, ibge_code=ibge_code
        )
        if franchise is not None:
            await leads.set_lead_routing(
                session,
                lead_id=lead.id,
                franchise_id=franchise["id"],
                territory_status=franchise["territory_status"],
            )
            routing = await leads.get_lead_routing(session, lead.id)

    await session.commit()

    logger.info(
        "lead.intake",
        lead_id=lead.id,
        created=lead.created,
        ibge_code=ibge_code,
        franchise_id=routing["franchise_id"] if routing else None,
    )

    if routing is not None:
        background_tasks.add_task(sync_lead_safely, lead.id)

    return IntakeResponse(
        lead_id=lead.id,
        external_id=lead.external_id,
        created=lead.created,
        ibge_code=ibge_code,
        routed_to=RoutedTo(**routing) if routing else None,
    )

# wchic/routes/franchises.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from wchic.core.exceptions import NotFoundError, ValidationError
from wchic.core.logging import get_structlog_logger
from wchic.db.session import get_session
from wchic.models.franchise import Franchise, FranchiseTerritory
from wchic.schemas.franchise import FranchiseIn, FranchiseOut, FranchiseUpdate, TerritoryIn
from wchic.services.auth import ROLE_ADMIN, require_role
from wchic.services.normalization import expand_state
from wchic.services.podio.workspaces import get_registry

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/franchises", tags=["franchises"], dependencies=[Depends(require_role(ROLE_ADMIN))])


def _to_out(franchise: Franchise) -> FranchiseOut:
    out = FranchiseOut.model_validate(franchise)
    workspace = get_registry().by_app_id(franchise.podio_app_id)
    return out.model_copy(update={"workspace_key": workspace.workspace_key if workspace else None})


def _check_app_id(podio_app_id) -> None:
    if podio_app_id is not None and get_registry().by_app_id(podio_app_id) is None:
        raise ValidationError(
            "podio_app_id does not belong to any configured workspace",
            code="unknown_podio_app",
            details={"podio_app_id": podio_app_id},
        )


def _territory(payload: TerritoryIn) -> FranchiseTerritory:
    return FranchiseTerritory(
        cidade=payload.cidade.strip(),
        estado=expand_state(payload.estado),
        ibge_code=payload.ibge_code,
        territory_status=payload.territory_status,
    )


async def _get_franchise(session: AsyncSession, franchise_id: int) -> Franchise:
    res = await session.execute(
        select(Franchise).options(selectinload(Franchise.territories)).where(Franchise.id == franchise_id)
    )
    franchise = res.scalar_one_or_none()
    if franchise is None:
        raise NotFoundError(f"Franchise {franchise_id} not found", code="franchise_not_found")
    return franchise


@router.get("", response_model=List[FranchiseOut])
async def list_franchises(session: AsyncSession = Depends(get_session)):
    res = await session.execute(
        select(Franchise).options(selectinload(Franchise.territories)).order_by(Franchise.franchise_name)
    )
    return [_to_out(f) for f in res.scalars().all()]


@router.get("/{franchise_id}", response_model=FranchiseOut)
async def get_franchise(franchise_id: int, session: AsyncSession = Depends(get_session)):
    return _to_out(await _get_franchise(session, franchise_id))


@router.post("", response_model=FranchiseOut, status_code=status.HTTP_201_CREATED)
async def create_franchise(payload: FranchiseIn, session: AsyncSession = Depends(get_session)):
    _check_app_id(payload.podio_app_id)
    franchise = Franchise(
        franchise_name=payload.franchise_name,
        whatsapp_phone=payload.whatsapp_phone,
        podio_app_id=payload.podio_app_id,
        is_active=payload.is_active,
        territories=[_territory(t) for t in payload.territories],
    )
    session.add(franchise)
    await session.commit()
    logger.info("franchise.created", franchise_id=franchise.id)
    return _to_out(await _get_franchise(session, franchise.id))


@router.patch("/{franchise_id}", response_model=FranchiseOut)
async def update_franchise(
    franchise_id: int,
    payload: FranchiseUpdate,
    session: AsyncSession = Depends(get_session),
):
    changes = payload.model_dump(exclude_unset=True)
    if "podio_app_id" in changes:
        _check_app_id(changes["podio_app_id"])
    franchise = await _get_franchise(session, franchise_id)
    franchise.update(**changes)
    await session.commit()
    logger.info("franchise.updated", franchise_id=franchise_id, fields=list(changes))
    return _to_out(await _get_franchise(session, franchise_id))


@router.post("/{franchise_id}/territories", response_model=FranchiseOut, status_code=status.HTTP_201_CREATED)
async def add_territory(
    franchise_id: int,
    payload: TerritoryIn,
    session: AsyncSession = Depends(get_session),
):
    franchise = await _get_franchise(session, franchise_id)
    franchise.territories.append(_territory(payload))
    await session.commit()
    return _to_out(await _get_franchise(session, franchise_id))


@router.delete("/{franchise_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_franchise(franchise_id: int, session: AsyncSession = Depends(get_session)):
    franchise = await _get_franchise(session, franchise_id)
    await session.delete(franchise)
    await session.commit()
    logger.info("franchise.deleted", franchise_id=franchise_id)

"""Tariff endpoints"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.academic import TariffCreate, TariffResponse, TariffUpdate
from app.schemas.responses import SuccessResponse
from app.services.catalog_service import CatalogService

router = APIRouter()


@router.get("", response_model=SuccessResponse[list[TariffResponse]])
async def list_tariffs(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    tariffs = await CatalogService.list_tariffs(db, active_only=active_only)
    return SuccessResponse(data=[TariffResponse.model_validate(t) for t in tariffs])


@router.post("", response_model=SuccessResponse[TariffResponse])
async def create_tariff(tariff_in: TariffCreate, db: AsyncSession = Depends(deps.get_db)) -> Any:
    tariff = await CatalogService.create_tariff(
        db,
        tariff_in.name,
        tariff_in.amount,
        tariff_in.type,
        tariff_in.billing_frequency,
        tariff_in.description,
    )
    return SuccessResponse(data=TariffResponse.model_validate(tariff), message="Tariff created successfully")


@router.get("/{tariff_id}", response_model=SuccessResponse[TariffResponse])
async def get_tariff(tariff_id: UUID, db: AsyncSession = Depends(deps.get_db)) -> Any:
    tariff = await CatalogService.get_tariff(db, tariff_id)
    return SuccessResponse(data=TariffResponse.model_validate(tariff))


@router.patch("/{tariff_id}", response_model=SuccessResponse[TariffResponse])
async def update_tariff(
    tariff_id: UUID,
    tariff_in: TariffUpdate,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Update a tariff. Already generated bills keep their charge snapshots."""
    tariff = await CatalogService.update_tariff(db, tariff_id, **tariff_in.model_dump(exclude_unset=True))
    return SuccessResponse(data=TariffResponse.model_validate(tariff), message="Tariff updated")

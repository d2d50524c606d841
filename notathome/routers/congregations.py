"""
Congregations Router

Congregation registration and approval, and the territory maps each
congregation works through.
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from notathome.core.auth import (
    CurrentActiveUser,
    CurrentSystemAdmin,
    ensure_manager,
    ensure_member,
)
from notathome.core.database import DbSession
from notathome.models.contracts.congregation import (
    CongregationPublic,
    CongregationRequest,
    TerritoryMapCreate,
    TerritoryMapPublic,
)
from notathome.models.enums import CongregationStatus
from notathome.models.orm.congregation import Congregation
from notathome.models.orm.territory_map import TerritoryMap
from notathome.repositories.congregation import CongregationRepository, TerritoryMapRepository
from notathome.routers.sessions import Congregations

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/congregations", tags=["congregations"])


async def territory_map_repository(db: DbSession) -> TerritoryMapRepository:
    return TerritoryMapRepository(db)


TerritoryMaps = Annotated[TerritoryMapRepository, Depends(territory_map_repository)]


async def _get_congregation_or_404(
    congregations: CongregationRepository, congregation_id: UUID
) -> Congregation:
    congregation = await congregations.get_by_id(congregation_id)
    if congregation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Congregation not found")
    return congregation


@router.post(
    "/requests", response_model=CongregationPublic, status_code=status.HTTP_201_CREATED
)
async def request_congregation(
    data: CongregationRequest,
    current_user: CurrentActiveUser,
    congregations: Congregations,
) -> CongregationPublic:
    """
    Register a congregation. It stays pending until a system admin approves it.

    Args:
        data: Registration details
        current_user: Current authenticated user
        congregations: Congregation repository

    Returns:
        The pending congregation
    """
    name = data.name.strip()
    if await congregations.get_by_name(name) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A congregation with this name already exists",
        )

    congregation = await congregations.create(
        Congregation(
            name=name,
            contact_email=data.contact_email,
            status=CongregationStatus.PENDING.value,
        )
    )

    logger.info(
        f"Congregation requested: {congregation.name}",
        extra={"congregation_id": str(congregation.id), "user_id": str(current_user.user_id)},
    )
    return CongregationPublic.model_validate(congregation)


@router.get("", response_model=list[CongregationPublic])
async def list_congregations(
    current_user: CurrentSystemAdmin,
    congregations: Congregations,
    status_filter: CongregationStatus | None = Query(None, alias="status"),
) -> list[CongregationPublic]:
    """List congregations, optionally only those in one status."""
    items = await congregations.list_by_status(status_filter.value if status_filter else None)
    return [CongregationPublic.model_validate(c) for c in items]


@router.get("/{congregation_id}", response_model=CongregationPublic)
async def get_congregation(
    congregation_id: UUID,
    current_user: CurrentActiveUser,
    congregations: Congregations,
) -> CongregationPublic:
    """Get a congregation."""
    ensure_member(current_user, congregation_id)
    congregation = await _get_congregation_or_404(congregations, congregation_id)
    return CongregationPublic.model_validate(congregation)


async def _set_status(
    congregations: CongregationRepository,
    congregation_id: UUID,
    new_status: CongregationStatus,
    admin_id: UUID,
) -> Congregation:
    congregation = await _get_congregation_or_404(congregations, congregation_id)
    congregation.status = new_status.value
    congregation = await congregations.update(congregation)

    logger.info(
        f"Congregation {congregation.name} marked {new_status.value}",
        extra={"congregation_id": str(congregation_id), "user_id": str(admin_id)},
    )
    return congregation


@router.post("/{congregation_id}/approve", response_model=CongregationPublic)
async def approve_congregation(
    congregation_id: UUID,
    current_user: CurrentSystemAdmin,
    congregations: Congregations,
) -> CongregationPublic:
    """Approve a pending congregation so it can run sessions."""
    congregation = await _set_status(
        congregations, congregation_id, CongregationStatus.ACTIVE, current_user.user_id
    )
    return CongregationPublic.model_validate(congregation)


@router.post("/{congregation_id}/reject", response_model=CongregationPublic)
async def reject_congregation(
    congregation_id: UUID,
    current_user: CurrentSystemAdmin,
    congregations: Congregations,
) -> CongregationPublic:
    """Reject a congregation request."""
    congregation = await _set_status(
        congregations, congregation_id, CongregationStatus.REJECTED, current_user.user_id
    )
    return CongregationPublic.model_validate(congregation)


# =============================================================================
# Territory maps
# =============================================================================


@router.get("/{congregation_id}/maps", response_model=list[TerritoryMapPublic])
async def list_territory_maps(
    congregation_id: UUID,
    current_user: CurrentActiveUser,
    maps: TerritoryMaps,
) -> list[TerritoryMapPublic]:
    """List a congregation's territory maps by number."""
    ensure_member(current_user, congregation_id)
    items = await maps.list_for_congregation(congregation_id)
    return [TerritoryMapPublic.model_validate(m) for m in items]


@router.post(
    "/{congregation_id}/maps",
    response_model=TerritoryMapPublic,
    status_code=status.HTTP_201_CREATED,
)
async def create_territory_map(
    congregation_id: UUID,
    data: TerritoryMapCreate,
    current_user: CurrentActiveUser,
    congregations: Congregations,
    maps: TerritoryMaps,
) -> TerritoryMapPublic:
    """
    Add a territory map. The image must already be stored; only its URL is kept.
    """
    ensure_manager(current_user, congregation_id)
    await _get_congregation_or_404(congregations, congregation_id)

    if await maps.get_by_number(congregation_id, data.map_number) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Map {data.map_number} already exists",
        )

    territory_map = await maps.create(
        TerritoryMap(
            congregation_id=congregation_id,
            map_number=data.map_number,
            name=data.name,
            description=data.description,
            image_url=data.image_url,
        )
    )

    logger.info(
        f"Territory map {territory_map.map_number} created",
        extra={"congregation_id": str(congregation_id), "user_id": str(current_user.user_id)},
    )
    return TerritoryMapPublic.model_validate(territory_map)


@router.delete("/{congregation_id}/maps/{map_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_territory_map(
    congregation_id: UUID,
    map_id: UUID,
    current_user: CurrentActiveUser,
    maps: TerritoryMaps,
) -> None:
    """Delete a territory map."""
    ensure_manager(current_user, congregation_id)

    territory_map = await maps.get_by_id(map_id)
    if territory_map is None or territory_map.congregation_id != congregation_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Map not found")

    await maps.delete(territory_map)
    logger.info(
        f"Territory map {territory_map.map_number} deleted",
        extra={"congregation_id": str(congregation_id), "user_id": str(current_user.user_id)},
    )

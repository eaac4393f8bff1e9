"""Client time preference routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.api.deps import get_actor
from mytrainer.booking import preferences
from mytrainer.booking.context import Actor
from mytrainer.database import get_db
from mytrainer.models.client import ClientTimePreference
from mytrainer.schemas.preference import TimePreferenceCreate, TimePreferenceRead

router = APIRouter(prefix="/api/clients/{client_id}/preferences", tags=["preferences"])


@router.get("", response_model=list[TimePreferenceRead])
async def list_preferences(
    client_id: int,
    include_inactive: bool = False,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[ClientTimePreference]:
    return await preferences.list_preferences(
        session, actor, client_id, active_only=not include_inactive
    )


@router.post("", response_model=TimePreferenceRead, status_code=201)
async def create_preference(
    client_id: int,
    body: TimePreferenceCreate,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> ClientTimePreference:
    """Add a weekly preferred slot. Active slots on one weekday may not overlap."""
    return await preferences.create_preference(
        session,
        actor,
        client_id,
        weekday=body.weekday,
        start_time=body.start_time,
        end_time=body.end_time,
        flex_minutes=body.flex_minutes,
        notes=body.notes,
        is_active=body.is_active,
    )


@router.delete("/{preference_id}", status_code=204)
async def delete_preference(
    client_id: int,
    preference_id: int,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> None:
    await preferences.delete_preference(session, actor, client_id, preference_id)

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.api.deps import get_actor
from mytrainer.booking.context import Actor
from mytrainer.booking.entitlements import PackStats, get_pack_stats
from mytrainer.database import get_db
from mytrainer.schemas.pack import PackStatsRead

router = APIRouter(prefix="/api/packs", tags=["packs"])


@router.get("/{pack_id}/stats", response_model=PackStatsRead)
async def pack_stats(
    pack_id: int,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> PackStats:
    """Live consumption for a pack, alongside the cached remaining counter."""
    return await get_pack_stats(session, actor, pack_id)

from fastapi import APIRouter

from slotfinder import __version__
from slotfinder.dependencies import Shared
from slotfinder.models.scheduling import StatsResponse

router = APIRouter()


@router.get("/stats", response_model=StatsResponse)
async def get_stats(shared: Shared) -> StatsResponse:
    async with shared.session() as adaptor:
        stats = await adaptor.get_stats()
    return StatsResponse(event_count=stats.event_count, person_count=stats.person_count, version=__version__)

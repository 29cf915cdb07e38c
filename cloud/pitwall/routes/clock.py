"""
Time authority API route.

Clients sample this endpoint to measure their clock offset. It must stay
cheap and free of side effects.
"""
from fastapi import APIRouter

from pitwall.schemas import ServerTimeResponse
from pitwall.services.time_authority import server_time_ms

router = APIRouter(prefix="/api/v1", tags=["time"])


@router.get("/time", response_model=ServerTimeResponse)
async def get_server_time():
    """Current server time in epoch milliseconds."""
    return ServerTimeResponse(server_time_ms=server_time_ms())

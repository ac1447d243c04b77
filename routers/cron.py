import asyncio
import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from dependencies import get_room_service
from errors import UnauthorizedError
from logging_config import get_logger
from room_service import RoomService
from schemas.rooms import SweepResponse
from sweeper import SweepResult, cleanup_expired_rooms

logger = get_logger(__name__)

cron_router = APIRouter(prefix="/api/cron", tags=["cron"])


def _authorized(authorization: Optional[str], secret: str) -> bool:
    # No configured secret means the endpoint stays closed
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization, f"Bearer {secret}")


@cron_router.get("/cleanup", response_model=SweepResponse)
async def cleanup(request: Request, authorization: Optional[str] = Header(None),
                  service: RoomService = Depends(get_room_service)):
    if not _authorized(authorization, request.app.state.cron_secret):
        logger.warning(f"Unauthorized cleanup request from {request.client.host if request.client else 'unknown'}")
        raise UnauthorizedError("Unauthorized")

    if service.durable is None:
        result = SweepResult()
    else:
        # Blocking database sweep, keep it off the event loop
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, cleanup_expired_rooms, service.durable, service.clock())
    logger.info(f"Cleanup finished: deleted={result.deleted_count}, errors={len(result.errors)}")
    return SweepResponse(deleted_count=result.deleted_count, errors=result.errors)

from fastapi import APIRouter, Depends, Request

from dependencies import get_room_service
from errors import NotFoundError
from logging_config import get_logger
from models import ExtendResult, RoomInfo
from room_service import RoomService
from schemas.rooms import (
    CreateRoomRequest,
    CreateRoomResponse,
    ExtendRoomRequest,
    JoinRoomRequest,
    JoinRoomResponse,
    LeaveRoomRequest,
    LeaveRoomResponse,
    RoomExistsResponse,
)

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/api", tags=["rooms"])


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@rooms_router.post("/create", response_model=CreateRoomResponse)
async def create_room(body: CreateRoomRequest, request: Request, service: RoomService = Depends(get_room_service)):
    # { "name": "Alice", "duration": 30, "participantsCount": 5 }
    # Response 200: { "message": "...", "code": "ABC-123", "expiresAt": "2025-11-17T12:34:56+00:00" }
    logger.info(f"Room creation request from {_client_host(request)}, name: {body.name}, "
                f"duration: {body.duration}, participantsCount: {body.participants_count}")
    created = service.create_room(body.name, body.duration, body.participants_count)
    return CreateRoomResponse(message="Room Created Successfully", code=created.code, expires_at=created.expires_at)


@rooms_router.post("/join", response_model=JoinRoomResponse)
async def join_room(body: JoinRoomRequest, request: Request, service: RoomService = Depends(get_room_service)):
    logger.info(f"Join room request for {body.code} from {_client_host(request)}, name: {body.name}")
    room = service.join_room(body.code, body.name)
    return JoinRoomResponse(message="Joined the Room Successfully", room=room)


@rooms_router.post("/leave", response_model=LeaveRoomResponse)
async def leave_room(body: LeaveRoomRequest, service: RoomService = Depends(get_room_service)):
    if not body.code or not body.name:
        return LeaveRoomResponse(success=False)
    return LeaveRoomResponse(success=service.leave_room(body.code, body.name.strip()))


@rooms_router.get("/rooms/{code}", response_model=RoomInfo)
async def get_room_info(code: str, service: RoomService = Depends(get_room_service)):
    """
    Room details with live figures:
    - remainingSeconds: seconds until the room expires
    - onlineUsers: names currently present
    - messageCount: messages currently retained
    """
    info = service.get_room_info(code)
    if info is None:
        logger.warning(f"Room details failed: Room {code} not found")
        raise NotFoundError("Room not found or has expired")
    return info


@rooms_router.get("/rooms/{code}/exists", response_model=RoomExistsResponse)
async def room_exists(code: str, service: RoomService = Depends(get_room_service)):
    return RoomExistsResponse(exists=service.room_exists(code))


@rooms_router.post("/rooms/{code}/extend", response_model=ExtendResult)
async def extend_room(code: str, body: ExtendRoomRequest, service: RoomService = Depends(get_room_service)):
    logger.info(f"Extend request for room {code} by {body.additional_minutes} minutes")
    return service.extend_room_time(code, body.additional_minutes)

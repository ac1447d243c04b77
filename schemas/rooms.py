from datetime import datetime
from typing import Optional

from models import CamelModel, Room


class CreateRoomRequest(CamelModel):
    name: Optional[str] = None
    duration: Optional[int] = None
    participants_count: Optional[int] = None

class CreateRoomResponse(CamelModel):
    message: str
    code: str
    expires_at: datetime

class JoinRoomRequest(CamelModel):
    code: Optional[str] = None
    name: Optional[str] = None

class JoinRoomResponse(CamelModel):
    message: str
    room: Room

class LeaveRoomRequest(CamelModel):
    code: Optional[str] = None
    name: Optional[str] = None

class LeaveRoomResponse(CamelModel):
    success: bool

class ExtendRoomRequest(CamelModel):
    additional_minutes: Optional[int] = None

class RoomExistsResponse(CamelModel):
    exists: bool

class SweepResponse(CamelModel):
    deleted_count: int
    errors: list[str]

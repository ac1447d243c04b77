from fastapi import APIRouter, Depends, Query

from constants import MESSAGE_WINDOW
from dependencies import get_room_service
from errors import NotFoundError, ValidationError
from logging_config import get_logger
from room_service import RoomService
from schemas.messages import MessagesResponse, SendMessageRequest, SendMessageResponse

logger = get_logger(__name__)

messages_router = APIRouter(prefix="/api/messages", tags=["messages"])


@messages_router.post("/send", response_model=SendMessageResponse)
async def send_message(body: SendMessageRequest, service: RoomService = Depends(get_room_service)):
    if not body.room_code:
        raise ValidationError("Missing required fields")
    message = service.send_message(body.room_code, body.user_name, body.message)
    if message is None:
        logger.warning(f"Message rejected: room {body.room_code} not found or expired")
        raise NotFoundError("Room not found or expired")
    return SendMessageResponse(success=True, message=message)


@messages_router.get("/{room_code}", response_model=MessagesResponse)
async def get_messages(room_code: str, limit: int = Query(MESSAGE_WINDOW, ge=1),
                       service: RoomService = Depends(get_room_service)):
    messages = service.get_messages(room_code, limit)
    return MessagesResponse(success=True, messages=messages, count=len(messages))

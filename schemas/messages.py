from typing import Optional

from models import CamelModel, Message


class SendMessageRequest(CamelModel):
    room_code: Optional[str] = None
    user_name: Optional[str] = None
    message: Optional[str] = None

class SendMessageResponse(CamelModel):
    success: bool
    message: Message

class MessagesResponse(CamelModel):
    success: bool
    messages: list[Message]
    count: int

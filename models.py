from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Room(CamelModel):
    code: str
    creator: str
    participants: list[str] = Field(default_factory=list)
    created_at: datetime
    expires_at: datetime
    duration: int
    participants_count: int
    message_count: int = 0

    def has_participant(self, user_name: str) -> bool:
        lowered = user_name.lower()
        return any(p.lower() == lowered for p in self.participants)

    def is_full(self) -> bool:
        return len(self.participants) >= self.participants_count


class RoomInfo(Room):
    remaining_seconds: int
    online_users: list[str] = Field(default_factory=list)


class Message(CamelModel):
    id: str
    user: str
    message: str
    timestamp: datetime


class CreatedRoom(CamelModel):
    code: str
    expires_at: datetime


class ExtendResult(CamelModel):
    success: bool
    new_expires_at: datetime

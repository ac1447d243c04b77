from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, create_engine, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship

from logging_config import get_logger
from models import Message, Room

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RoomRecord(Base):
    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    code: Mapped[str] = mapped_column(String(7), unique=True, index=True, nullable=False)
    creator: Mapped[str] = mapped_column(String(100), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    participants_count: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    participants: Mapped[list["ParticipantRecord"]] = relationship(
        back_populates="room", cascade="all, delete-orphan", order_by="ParticipantRecord.joined_at"
    )
    messages: Mapped[list["MessageRecord"]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )


class ParticipantRecord(Base):
    __tablename__ = "participants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    room_code: Mapped[str] = mapped_column(
        String(7), ForeignKey("rooms.code", ondelete="CASCADE"), nullable=False, index=True
    )
    user_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    room: Mapped[RoomRecord] = relationship(back_populates="participants")


class MessageRecord(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    room_code: Mapped[str] = mapped_column(
        String(7), ForeignKey("rooms.code", ondelete="CASCADE"), nullable=False, index=True
    )
    user_name: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    room: Mapped[RoomRecord] = relationship(back_populates="messages")


class DurableStore:
    """Relational replica of rooms, participants and messages, swept once rooms expire.

    Every method opens its own session and commits before returning, so a
    failure never leaves a half-applied write behind.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, url: str, **engine_kwargs) -> "DurableStore":
        engine_kwargs.setdefault("pool_pre_ping", True)
        return cls(create_engine(url, **engine_kwargs))

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    def _find(self, session: Session, code: str) -> Optional[RoomRecord]:
        return session.scalar(select(RoomRecord).where(RoomRecord.code == code))

    # Rooms

    def room_exists(self, code: str) -> bool:
        """True for any row with this code, expired or not, since the code column is unique."""
        with Session(self.engine) as session:
            return session.scalar(select(RoomRecord.id).where(RoomRecord.code == code)) is not None

    def insert_room(self, room: Room) -> None:
        with Session(self.engine) as session:
            record = RoomRecord(
                code=room.code,
                creator=room.creator,
                duration=room.duration,
                participants_count=room.participants_count,
                message_count=room.message_count,
                created_at=room.created_at,
                expires_at=room.expires_at,
                is_active=True,
            )
            record.participants = [
                ParticipantRecord(user_name=name, joined_at=room.created_at, last_seen_at=room.created_at)
                for name in room.participants
            ]
            session.add(record)
            session.commit()
            logger.debug(f"Stored room {room.code} in the durable store")

    def get_room(self, code: str) -> Optional[Room]:
        with Session(self.engine) as session:
            record = self._find(session, code)
            if record is None:
                return None
            return Room(
                code=record.code,
                creator=record.creator,
                participants=[p.user_name for p in record.participants],
                created_at=_as_utc(record.created_at),
                expires_at=_as_utc(record.expires_at),
                duration=record.duration,
                participants_count=record.participants_count,
                message_count=record.message_count,
            )

    def update_expiry(self, code: str, expires_at: datetime, duration: int) -> bool:
        with Session(self.engine) as session:
            result = session.execute(
                update(RoomRecord)
                .where(RoomRecord.code == code)
                .values(expires_at=expires_at, duration=duration)
            )
            session.commit()
            return result.rowcount > 0

    def delete_room(self, code: str) -> bool:
        with Session(self.engine) as session:
            record = self._find(session, code)
            if record is None:
                return False
            session.delete(record)
            session.commit()
            return True

    def expired_room_codes(self, now: datetime) -> list[str]:
        with Session(self.engine) as session:
            return list(session.scalars(select(RoomRecord.code).where(RoomRecord.expires_at < now)))

    def mark_inactive(self, now: datetime) -> int:
        with Session(self.engine) as session:
            result = session.execute(
                update(RoomRecord)
                .where(RoomRecord.expires_at < now, RoomRecord.is_active.is_(True))
                .values(is_active=False)
            )
            session.commit()
            return result.rowcount or 0

    # Participants

    def add_participant(self, code: str, user_name: str, joined_at: datetime) -> None:
        with Session(self.engine) as session:
            session.add(ParticipantRecord(
                room_code=code, user_name=user_name, joined_at=joined_at, last_seen_at=joined_at,
            ))
            session.commit()

    def set_participant_online(self, code: str, user_name: str, is_online: bool, seen_at: datetime) -> int:
        with Session(self.engine) as session:
            result = session.execute(
                update(ParticipantRecord)
                .where(
                    ParticipantRecord.room_code == code,
                    func.lower(ParticipantRecord.user_name) == user_name.lower(),
                )
                .values(is_online=is_online, last_seen_at=seen_at)
            )
            session.commit()
            return result.rowcount or 0

    # Messages

    def add_message(self, code: str, message: Message) -> int:
        """Store a message and return the recomputed message count of the room."""
        with Session(self.engine) as session:
            session.add(MessageRecord(
                id=message.id,
                room_code=code,
                user_name=message.user,
                message=message.message,
                timestamp=message.timestamp,
            ))
            session.flush()
            count = session.scalar(
                select(func.count()).select_from(MessageRecord).where(MessageRecord.room_code == code)
            )
            session.execute(update(RoomRecord).where(RoomRecord.code == code).values(message_count=count))
            session.commit()
            return count

    def count_messages(self, code: str) -> int:
        with Session(self.engine) as session:
            return session.scalar(
                select(func.count()).select_from(MessageRecord).where(MessageRecord.room_code == code)
            ) or 0

    def get_messages(self, code: str, limit: int) -> list[Message]:
        """Newest first."""
        with Session(self.engine) as session:
            records = session.scalars(
                select(MessageRecord)
                .where(MessageRecord.room_code == code)
                .order_by(MessageRecord.timestamp.desc())
                .limit(limit)
            )
            return [
                Message(id=r.id, user=r.user_name, message=r.message, timestamp=_as_utc(r.timestamp))
                for r in records
            ]

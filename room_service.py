import math
import random
import uuid
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta
from typing import Callable, Optional

import redis
from sqlalchemy.exc import SQLAlchemyError

from backend import RedisBackend
from constants import (
    DEFAULT_MESSAGE_LIMIT,
    MAX_CODE_ATTEMPTS,
    MESSAGE_EVENT,
    MESSAGE_WINDOW,
    ROOM_CODE_CHARS,
    ROOM_MAX_TOTAL_MINUTES,
)
from database import DurableStore
from errors import AllocationError, GoneError, NotFoundError, RoomFullError, ValidationError
from logging_config import get_logger
from models import CreatedRoom, ExtendResult, Message, Room, RoomInfo, utcnow
from notifier import BroadcastNotifier
from validation import (
    validate_additional_minutes,
    validate_duration,
    validate_message_limit,
    validate_message_text,
    validate_participants_count,
    validate_room_code,
    validate_user_name,
)

logger = get_logger(__name__)


def generate_room_code() -> str:
    code = ''.join(random.choices(ROOM_CODE_CHARS, k=6))
    return f"{code[:3]}-{code[3:]}"


class RoomService:
    """Room lifecycle, message history and presence over the Redis cache.

    Redis is the source of truth for live rooms. When a ``DurableStore`` is
    given, every write is replicated to it best-effort (failures are logged,
    never raised) and reads fall back to it when the cache has lost a room.
    Durable writes go through ``executor`` when one is given; it must run
    tasks in submission order (a single worker) so a room row lands before
    its participants and messages.
    """

    def __init__(
        self,
        cache: RedisBackend,
        durable: Optional[DurableStore] = None,
        notifier: Optional[BroadcastNotifier] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], datetime] = utcnow,
        max_total_minutes: int = ROOM_MAX_TOTAL_MINUTES,
    ):
        self.cache = cache
        self.durable = durable
        self.notifier = notifier
        self.executor = executor
        self.clock = clock
        self.max_total_minutes = max_total_minutes

    # Durable replication

    def _replicate(self, description: str, method: str, *args):
        """Run ``DurableStore.<method>(*args)`` without letting its failure reach the caller."""
        if self.durable is None:
            return
        fn = getattr(self.durable, method)
        if self.executor is not None:
            future = self.executor.submit(fn, *args)
            future.add_done_callback(lambda f: self._log_replication_failure(description, f))
            return
        try:
            fn(*args)
        except SQLAlchemyError as e:
            logger.warning(f"Durable store write failed ({description}): {e}", exc_info=True)

    @staticmethod
    def _log_replication_failure(description: str, future: Future):
        error = future.exception()
        if error is not None:
            logger.warning(f"Durable store write failed ({description}): {error}", exc_info=error)

    def _seconds_until(self, moment: datetime) -> int:
        return max(0, math.ceil((moment - self.clock()).total_seconds()))

    def _code_taken(self, code: str) -> bool:
        if self.cache.room_exists(code):
            return True
        if self.durable is None:
            return False
        try:
            return self.durable.room_exists(code)
        except SQLAlchemyError as e:
            logger.warning(f"Durable store collision check failed for {code}: {e}")
            return False

    # Rooms

    def create_room(self, user_name: str, duration: int, participants_count: Optional[int] = None) -> CreatedRoom:
        user_name = validate_user_name(user_name)
        duration = validate_duration(duration)
        participants_count = validate_participants_count(participants_count)

        for attempt in range(MAX_CODE_ATTEMPTS):
            code = generate_room_code()
            if not self._code_taken(code):
                break
            logger.debug(f"Room code {code} already taken (attempt {attempt + 1})")
        else:
            logger.error(f"Could not allocate a unique room code after {MAX_CODE_ATTEMPTS} attempts")
            raise AllocationError("Failed to generate unique room code")

        ttl = duration * 60
        now = self.clock()
        room = Room(
            code=code,
            creator=user_name,
            participants=[user_name],
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
            duration=duration,
            participants_count=participants_count,
            message_count=0,
        )
        self.cache.save_room(code, room.model_dump(mode="json", by_alias=True), ttl)
        self.cache.add_online_user(code, user_name, ttl)
        self._replicate(f"create room {code}", "insert_room", room)

        logger.info(f"Room {code} created by {user_name}: duration={duration}m, capacity={participants_count}")
        return CreatedRoom(code=code, expires_at=room.expires_at)

    def get_room(self, code: str) -> Optional[Room]:
        data = self.cache.get_room(code)
        if data is not None:
            room = Room.model_validate(data)
            if room.expires_at <= self.clock():
                logger.debug(f"Room {code} is past its expiry")
                return None
            return room
        if self.durable is None:
            return None

        try:
            room = self.durable.get_room(code)
        except SQLAlchemyError as e:
            logger.warning(f"Durable store read failed for room {code}: {e}")
            return None
        if room is None:
            return None
        remaining = self._seconds_until(room.expires_at)
        if remaining <= 0:
            # Expired rows wait for the sweeper, they are never brought back
            return None

        try:
            self.cache.save_room(code, room.model_dump(mode="json", by_alias=True), remaining)
            logger.info(f"Room {code} restored to cache from the durable store ({remaining}s left)")
        except redis.RedisError as e:
            logger.warning(f"Could not repopulate room {code} in cache: {e}")
        return room

    def room_exists(self, code: str) -> bool:
        return self.get_room(code) is not None

    def get_room_info(self, code: str) -> Optional[RoomInfo]:
        room = self.get_room(code)
        if room is None:
            return None
        remaining = self.cache.get_ttl(code)
        if remaining < 0:
            remaining = self._seconds_until(room.expires_at)
        return RoomInfo(
            **room.model_dump(exclude={"message_count"}),
            message_count=self.count_messages(code),
            remaining_seconds=remaining,
            online_users=self.get_online_users(code),
        )

    def join_room(self, code: str, user_name: str) -> Room:
        code = validate_room_code(code)
        user_name = validate_user_name(user_name)

        room = self.get_room(code)
        if room is None:
            logger.warning(f"Join rejected: room {code} not found")
            raise NotFoundError("Room not found or has expired")

        # Names already on the list may come back even when the room is full
        is_member = room.has_participant(user_name)
        if room.is_full() and not is_member:
            logger.warning(f"Join rejected: room {code} is full ({room.participants_count})")
            raise RoomFullError(
                f"Room is full ({room.participants_count}/{room.participants_count} participants)"
            )
        if is_member:
            # Presence follows the spelling already on the participant list
            user_name = next(p for p in room.participants if p.lower() == user_name.lower())
        else:
            room.participants.append(user_name)

        ttl = self.cache.get_ttl(code)
        if ttl <= 0:
            logger.warning(f"Join rejected: room {code} expired before the join was saved")
            raise GoneError("Room has expired")

        self.cache.save_room(code, room.model_dump(mode="json", by_alias=True), ttl)
        self.cache.add_online_user(code, user_name, ttl)
        self.cache.sync_ttl(code, ttl)

        now = self.clock()
        if is_member:
            self._replicate(f"rejoin {user_name} in {code}", "set_participant_online",
                            code, user_name, True, now)
        else:
            self._replicate(f"join {user_name} in {code}", "add_participant",
                            code, user_name, now)

        logger.info(f"{user_name} joined room {code} ({len(room.participants)}/{room.participants_count})")
        return room

    def leave_room(self, code: str, user_name: str) -> bool:
        """Drop the user from the online set only; membership lasts as long as the room."""
        try:
            self.cache.remove_online_user(code, user_name)
        except redis.RedisError as e:
            logger.error(f"Error leaving room {code} for {user_name}: {e}")
            return False
        self._replicate(f"leave {user_name} from {code}", "set_participant_online",
                        code, user_name, False, self.clock())
        logger.info(f"{user_name} left room {code}")
        return True

    def extend_room_time(self, code: str, additional_minutes: int) -> ExtendResult:
        additional_minutes = validate_additional_minutes(additional_minutes)
        room = self.get_room(code)
        if room is None:
            raise NotFoundError("Room not found or has expired")

        new_duration = room.duration + additional_minutes
        if self.max_total_minutes and new_duration > self.max_total_minutes:
            raise ValidationError(f"Room cannot run longer than {self.max_total_minutes} minutes in total")

        ttl = self.cache.get_ttl(code)
        if ttl <= 0:
            raise GoneError("Room has expired")

        new_ttl = ttl + additional_minutes * 60
        room.expires_at = self.clock() + timedelta(seconds=new_ttl)
        room.duration = new_duration
        self.cache.save_room(code, room.model_dump(mode="json", by_alias=True), new_ttl)
        self.cache.sync_ttl(code, new_ttl)
        self._replicate(f"extend room {code}", "update_expiry",
                        code, room.expires_at, room.duration)

        logger.info(f"Room {code} extended by {additional_minutes}m, now expires at {room.expires_at.isoformat()}")
        return ExtendResult(success=True, new_expires_at=room.expires_at)

    # Messages

    def add_message(self, code: str, user_name: str, text: str) -> Optional[Message]:
        """Append a message to a live room. Returns None when the room is gone."""
        user_name = validate_user_name(user_name)
        text = validate_message_text(text)

        if self.get_room(code) is None:
            return None
        ttl = self.cache.get_ttl(code)
        if ttl <= 0:
            return None

        message = Message(id=str(uuid.uuid4()), user=user_name, message=text, timestamp=self.clock())
        self.cache.push_message(code, message.model_dump(mode="json"), ttl, window=MESSAGE_WINDOW)
        self._replicate(f"message {message.id} in {code}", "add_message",
                        code, message)
        logger.debug(f"Message {message.id} from {user_name} stored in room {code}")
        return message

    def send_message(self, code: str, user_name: str, text: str) -> Optional[Message]:
        """Store a message and broadcast it to the room's subscribers."""
        message = self.add_message(code, user_name, text)
        if message is None or self.notifier is None:
            return message
        try:
            self.notifier.publish(code, MESSAGE_EVENT, message.model_dump(mode="json"))
        except redis.RedisError as e:
            logger.warning(f"Broadcast of message {message.id} in room {code} failed: {e}")
        return message

    def get_messages(self, code: str, limit: int = DEFAULT_MESSAGE_LIMIT) -> list[Message]:
        """Most recent ``limit`` messages, oldest first."""
        limit = validate_message_limit(limit)
        cached = self.cache.get_messages(code, limit)
        if cached:
            return [Message.model_validate(m) for m in reversed(cached)]
        if self.durable is None or self.get_room(code) is None:
            return []

        try:
            newest_first = self.durable.get_messages(code, limit)
        except SQLAlchemyError as e:
            logger.warning(f"Durable store message read failed for room {code}: {e}")
            return []

        if newest_first:
            try:
                ttl = self.cache.get_ttl(code)
                if ttl > 0:
                    self.cache.replace_messages(code, [m.model_dump(mode="json") for m in newest_first], ttl)
            except redis.RedisError as e:
                logger.warning(f"Could not repopulate messages for room {code}: {e}")
        return list(reversed(newest_first))

    def count_messages(self, code: str) -> int:
        count = self.cache.count_messages(code)
        if count or self.durable is None:
            return count
        try:
            return self.durable.count_messages(code)
        except SQLAlchemyError as e:
            logger.warning(f"Durable store message count failed for room {code}: {e}")
            return 0

    # Presence

    def is_user_online(self, code: str, user_name: str) -> bool:
        return self.cache.is_user_online(code, user_name)

    def get_online_users(self, code: str) -> list[str]:
        return sorted(set(self.cache.get_online_users(code)))

import json
from typing import Iterable, Optional

import redis

from constants import MESSAGE_WINDOW, REDIS_HOST, REDIS_PASSWORD, REDIS_PORT, REDIS_URL
from logging_config import get_logger
from redis_keys import REDIS_MESSAGES_KEY, REDIS_ONLINE_KEY, REDIS_ROOM_KEY, REDIS_ROOM_SCAN_PATTERN

logger = get_logger(__name__)


def create_redis_client() -> redis.Redis:
    """Open the process-wide Redis connection pool and check it answers."""
    try:
        if REDIS_URL:
            client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
        else:
            client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
        client.ping()
        logger.info(f"Redis client connected successfully to {REDIS_URL or f'{REDIS_HOST}:{REDIS_PORT}'}")
        return client
    except redis.RedisError as e:
        logger.error(f"Failed to connect to Redis at {REDIS_URL or f'{REDIS_HOST}:{REDIS_PORT}'}: {e}", exc_info=True)
        raise


class RedisBackend:
    """Owns the cache representation of rooms: record, online set and message list.

    The client must be created with ``decode_responses=True``.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    def ping(self) -> bool:
        return bool(self.redis_client.ping())

    # Rooms

    def room_exists(self, code: str) -> bool:
        return self.redis_client.exists(REDIS_ROOM_KEY.format(code=code)) == 1

    def save_room(self, code: str, room_data: dict, ttl: int):
        """Replace the room hash and set its TTL in one transaction."""
        key = REDIS_ROOM_KEY.format(code=code)
        # Every value is JSON so names like "123" or "true" survive the round trip
        mapping = {k: json.dumps(v) for k, v in room_data.items() if v is not None}
        pipe = self.redis_client.pipeline()
        pipe.delete(key)
        pipe.hset(key, mapping=mapping)
        pipe.expire(key, ttl)
        pipe.execute()
        logger.debug(f"Saved room {code} with TTL {ttl} seconds")

    def get_room(self, code: str) -> Optional[dict]:
        room_data = self.redis_client.hgetall(REDIS_ROOM_KEY.format(code=code))
        if not room_data:
            logger.debug(f"Room {code} not found in Redis")
            return None
        result = {}
        for k, v in room_data.items():
            try:
                result[k] = json.loads(v)
            except json.JSONDecodeError:
                result[k] = v
        return result

    def get_ttl(self, code: str) -> int:
        """Remaining seconds on the room record; -2 when missing, -1 when it never expires."""
        return self.redis_client.ttl(REDIS_ROOM_KEY.format(code=code))

    def sync_ttl(self, code: str, ttl: int):
        """Align the presence set and message list with the room record's TTL."""
        pipe = self.redis_client.pipeline()
        pipe.expire(REDIS_ONLINE_KEY.format(code=code), ttl)
        pipe.expire(REDIS_MESSAGES_KEY.format(code=code), ttl)
        pipe.execute()

    def delete_room(self, code: str) -> int:
        logger.info(f"Deleting cache keys for room {code}")
        return self.redis_client.delete(
            REDIS_ROOM_KEY.format(code=code),
            REDIS_ONLINE_KEY.format(code=code),
            REDIS_MESSAGES_KEY.format(code=code),
        )

    def list_room_codes(self) -> list[str]:
        prefix = REDIS_ROOM_KEY.format(code="")
        return [key[len(prefix):] for key in self.redis_client.scan_iter(match=REDIS_ROOM_SCAN_PATTERN)]

    # Presence

    def add_online_user(self, code: str, user_name: str, ttl: int):
        key = REDIS_ONLINE_KEY.format(code=code)
        pipe = self.redis_client.pipeline()
        pipe.sadd(key, user_name)
        pipe.expire(key, ttl)
        added, _ = pipe.execute()
        logger.debug(f"User {user_name} online in room {code} (new={bool(added)})")

    def remove_online_user(self, code: str, user_name: str) -> bool:
        removed = self.redis_client.srem(REDIS_ONLINE_KEY.format(code=code), user_name)
        logger.debug(f"User {user_name} offline in room {code} (removed={bool(removed)})")
        return bool(removed)

    def get_online_users(self, code: str) -> set[str]:
        return self.redis_client.smembers(REDIS_ONLINE_KEY.format(code=code))

    def is_user_online(self, code: str, user_name: str) -> bool:
        return bool(self.redis_client.sismember(REDIS_ONLINE_KEY.format(code=code), user_name))

    # Messages

    def push_message(self, code: str, message: dict, ttl: int, window: int = MESSAGE_WINDOW):
        """Prepend a message, keep only the newest ``window`` entries and expire with the room."""
        key = REDIS_MESSAGES_KEY.format(code=code)
        pipe = self.redis_client.pipeline()
        pipe.lpush(key, json.dumps(message))
        pipe.ltrim(key, 0, window - 1)
        pipe.expire(key, ttl)
        pipe.execute()

    def get_messages(self, code: str, limit: int) -> list[dict]:
        """Newest first."""
        raw = self.redis_client.lrange(REDIS_MESSAGES_KEY.format(code=code), 0, limit - 1)
        return [json.loads(item) for item in raw]

    def count_messages(self, code: str) -> int:
        return self.redis_client.llen(REDIS_MESSAGES_KEY.format(code=code))

    def replace_messages(self, code: str, messages: Iterable[dict], ttl: int):
        """Rebuild the list from newest-first messages."""
        key = REDIS_MESSAGES_KEY.format(code=code)
        encoded = [json.dumps(m) for m in messages]
        pipe = self.redis_client.pipeline()
        pipe.delete(key)
        if encoded:
            pipe.rpush(key, *encoded)
            pipe.expire(key, ttl)
        pipe.execute()
        logger.debug(f"Repopulated {len(encoded)} messages for room {code}")

import json

import redis

from logging_config import get_logger
from redis_keys import REDIS_ROOM_CHANNEL

logger = get_logger(__name__)


class BroadcastNotifier:
    """Fans room events out to subscribers over Redis pub/sub."""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    @staticmethod
    def channel_for(code: str) -> str:
        return REDIS_ROOM_CHANNEL.format(code=code)

    def publish(self, code: str, event: str, payload: dict) -> int:
        channel = self.channel_for(code)
        subscribers = self.redis_client.publish(channel, json.dumps({"event": event, "data": payload}))
        logger.debug(f"Published {event} to {channel}, {subscribers} subscribers")
        return subscribers

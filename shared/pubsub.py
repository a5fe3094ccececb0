import os
import logging
from typing import List
import redis

from .events import Event

logger = logging.getLogger(__name__)

EVENT_LOG_LIMIT = 1000


class PubSubClient:
    def __init__(self, redis_url: str = None, client: redis.Redis = None):
        self.redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379')
        self.redis = client or redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )

    def publish(self, channel: str, event: Event):
        self.redis.publish(channel, event.to_json())

    def publish_server_event(self, server_id: str, event: Event):
        """Publish to the server's channel and the global feed, and log it.

        Events only feed dashboards, so a Redis outage is logged and dropped.
        """
        try:
            self.publish(f"server:{server_id}:events", event)
            self.publish("global:announcements", event)
            self.log_event(server_id, event)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Failed to publish {event.to_dict()['type']} for {server_id}: {e}")

    def log_event(self, server_id: str, event: Event):
        key = f"server:{server_id}:event_log"
        self.redis.lpush(key, event.to_json())
        self.redis.ltrim(key, 0, EVENT_LOG_LIMIT - 1)

    def get_recent_events(self, server_id: str, count: int = 50) -> List[Event]:
        key = f"server:{server_id}:event_log"
        events_json = self.redis.lrange(key, 0, count - 1)
        return [Event.from_json(e) for e in events_json]

    def ping(self) -> bool:
        return bool(self.redis.ping())

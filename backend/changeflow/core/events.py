"""Live change notifications for connected clients.

Events are published fire-and-forget on a Redis pub/sub channel that the
websocket gateway relays to browsers. There is no acknowledgement and no
retry; a lost event only means a client refreshes later.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

import redis

from changeflow.core.cache import get_redis_client
from changeflow.core.config import settings

logger = logging.getLogger(__name__)

CHANGE_CREATED = "CHANGE_CREATED"
CHANGE_CONFLICTED = "CHANGE_CONFLICTED"
CHANGE_APPROVED = "CHANGE_APPROVED"
CHANGE_REJECTED = "CHANGE_REJECTED"
CHANGE_COMMITTED = "CHANGE_COMMITTED"
CHANGE_ROLLED_BACK = "CHANGE_ROLLED_BACK"
CONFLICT_RESOLVED = "CONFLICT_RESOLVED"
ENTITY_UPDATED = "ENTITY_UPDATED"

EVENT_TYPES = [
    CHANGE_CREATED,
    CHANGE_CONFLICTED,
    CHANGE_APPROVED,
    CHANGE_REJECTED,
    CHANGE_COMMITTED,
    CHANGE_ROLLED_BACK,
    CONFLICT_RESOLVED,
    ENTITY_UPDATED,
]


class EventBroadcaster:
    """Sink for live update events."""

    def broadcast(self, event_type: str, data: dict[str, Any]) -> None:
        raise NotImplementedError


class NullEventBroadcaster(EventBroadcaster):
    """Drops every event. Used when no gateway is attached."""

    def broadcast(self, event_type: str, data: dict[str, Any]) -> None:
        return None


class RedisEventBroadcaster(EventBroadcaster):
    def __init__(self, client: redis.Redis, channel: str | None = None):
        self.client = client
        self.channel = channel or settings.BROADCAST_CHANNEL

    def broadcast(self, event_type: str, data: dict[str, Any]) -> None:
        message = {
            "type": event_type,
            "data": data,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        try:
            self.client.publish(self.channel, json.dumps(message, default=str))
        except Exception:
            logger.exception("Failed to broadcast %s event", event_type)


def get_broadcaster() -> EventBroadcaster:
    client = get_redis_client()
    if client is None:
        return NullEventBroadcaster()
    return RedisEventBroadcaster(client)

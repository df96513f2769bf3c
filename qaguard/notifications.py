"""Notification sink — best-effort delivery to a user's live sessions.

The socket gateway subscribes to two Redis channels:
    socket:emit        {"userId", "event", "data"}
    socket:disconnect  "<userId>"

Without Redis, MemoryNotifier logs and remembers recent events.
"""
from __future__ import annotations

import json
import logging
from collections import deque
from typing import Any

logger = logging.getLogger(__name__)

EMIT_CHANNEL = "socket:emit"
DISCONNECT_CHANNEL = "socket:disconnect"


class MemoryNotifier:
    def __init__(self, max_events: int = 1000):
        self.events: deque[tuple[str, str, Any]] = deque(maxlen=max_events)
        self.disconnected: deque[str] = deque(maxlen=max_events)

    async def notify(self, user_id: str, event: str, payload: Any) -> None:
        logger.info("notify user=%s event=%s", user_id, event)
        self.events.append((user_id, event, payload))

    async def disconnect(self, user_id: str) -> None:
        logger.info("disconnect user=%s", user_id)
        self.disconnected.append(user_id)

    def events_for(self, user_id: str, event: str | None = None) -> list[Any]:
        return [p for (u, e, p) in self.events if u == user_id and (event is None or e == event)]


class RedisNotifier:
    def __init__(self, client):
        self.redis = client

    async def notify(self, user_id: str, event: str, payload: Any) -> None:
        message = json.dumps({"userId": user_id, "event": event, "data": payload}, default=str)
        await self.redis.publish(EMIT_CHANNEL, message)

    async def disconnect(self, user_id: str) -> None:
        await self.redis.publish(DISCONNECT_CHANNEL, json.dumps(user_id))


async def deliver(notifier, user_id: str, event: str, payload: Any) -> None:
    """Fire-and-forget notify. Failures are logged and swallowed."""
    try:
        await notifier.notify(user_id, event, payload)
    except Exception:
        logger.warning("Notification %s to user %s failed", event, user_id, exc_info=True)


async def terminate_sessions(notifier, user_id: str) -> None:
    """Ask the socket gateway to drop every live connection of a banned user."""
    try:
        await notifier.disconnect(user_id)
    except Exception:
        logger.warning("Disconnect signal for user %s failed", user_id, exc_info=True)

"""
Room-scoped, best-effort event delivery to live clients.

Each connected client is a ``Subscriber`` with a bounded outbound queue and a
set of joined rooms. ``EventBroadcaster.emit`` only enqueues, so it never
blocks the request that triggered it; the transport (websocket or SSE) drains
each queue on its own task. There is no acknowledgement and no replay: a
client that is not connected when an event is emitted never sees it.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from logging_config import get_logger

logger = get_logger(__name__)

# Event names
PORTFOLIO_CREATED = "portfolio-created"
PORTFOLIO_UPDATED = "portfolio-updated"
PORTFOLIO_CHANGED = "portfolio-changed"
PORTFOLIO_DELETED = "portfolio-deleted"
AVATAR_UPLOADED = "avatar-uploaded"
ROOM_JOINED = "room-joined"
TEST_EVENT = "test-event"

# Room names
CUSTOMER_ROOM = "customer-updates"
ADMIN_ROOM = "admin-updates"


def owner_room(owner_id: str) -> str:
    return f"{owner_id}-updates"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class Subscriber:
    """One live client connection."""

    def __init__(self, sid: Optional[str] = None, maxsize: int = 100):
        self.sid = sid or uuid.uuid4().hex
        self.rooms: Set[str] = set()
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def deliver(self, message: Dict[str, Any]) -> bool:
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    async def next_message(self) -> Dict[str, Any]:
        return await self.queue.get()

    def pending(self) -> List[Dict[str, Any]]:
        """Drain whatever is queued right now."""
        messages = []
        while not self.queue.empty():
            messages.append(self.queue.get_nowait())
        return messages


class EventBroadcaster:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: Dict[str, Subscriber] = {}
        self._rooms: Dict[str, Set[str]] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def register(self, subscriber: Optional[Subscriber] = None) -> Subscriber:
        subscriber = subscriber or Subscriber(maxsize=self.queue_size)
        self._subscribers[subscriber.sid] = subscriber
        logger.info("client connected", sid=subscriber.sid, total_connections=len(self._subscribers))
        return subscriber

    def unregister(self, sid: str) -> None:
        """Drop a subscriber and release all of its room memberships."""
        subscriber = self._subscribers.pop(sid, None)
        if subscriber is None:
            return
        for room in subscriber.rooms:
            members = self._rooms.get(room)
            if members is not None:
                members.discard(sid)
                if not members:
                    del self._rooms[room]
        subscriber.rooms.clear()
        logger.info("client disconnected", sid=sid, total_connections=len(self._subscribers))

    def join(self, sid: str, room: str) -> None:
        subscriber = self._subscribers.get(sid)
        if subscriber is None:
            return
        subscriber.rooms.add(room)
        self._rooms.setdefault(room, set()).add(sid)
        subscriber.deliver({"event": ROOM_JOINED, "data": {"room": room, "timestamp": utc_timestamp()}})
        logger.info("client joined room", sid=sid, room=room)

    def leave(self, sid: str, room: str) -> None:
        subscriber = self._subscribers.get(sid)
        if subscriber is not None:
            subscriber.rooms.discard(room)
        members = self._rooms.get(room)
        if members is not None:
            members.discard(sid)
            if not members:
                del self._rooms[room]

    def room_members(self, room: str) -> Set[str]:
        return set(self._rooms.get(room, set()))

    def emit(self, event: str, data: Dict[str, Any], rooms: Optional[Iterable[str]] = None) -> int:
        """Queue ``event`` for every subscriber, or for the union of ``rooms``.

        A subscriber in several of the target rooms receives the event once.
        Returns how many subscribers it was queued for.
        """
        payload = dict(data)
        payload.setdefault("timestamp", utc_timestamp())
        message = {"event": event, "data": payload}

        room_list = list(rooms) if rooms is not None else None
        if room_list is None:
            targets = list(self._subscribers)
        else:
            sids: Set[str] = set()
            for room in room_list:
                sids |= self._rooms.get(room, set())
            targets = list(sids)

        delivered = 0
        for sid in targets:
            subscriber = self._subscribers.get(sid)
            if subscriber is None:
                continue
            if subscriber.deliver(message):
                delivered += 1
            else:
                logger.warning("subscriber queue full, event dropped", sid=sid, event_name=event)

        logger.debug("event emitted", event_name=event, rooms=room_list, delivered=delivered)
        return delivered

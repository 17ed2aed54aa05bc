"""
Realtime endpoints.

``/ws`` is the streaming channel: JSON frames shaped ``{"event": ..., "data": ...}``
in both directions. ``/realtime/events`` is the Server-Sent Events fallback
for clients that cannot keep a websocket open; it joins the rooms given in
the query string and streams the same events.
"""

import asyncio
import contextlib
import json
from typing import Any, List

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect
from sse_starlette.sse import EventSourceResponse

from broadcaster import ADMIN_ROOM, CUSTOMER_ROOM, EventBroadcaster, Subscriber, owner_room
from config import Settings
from logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Real-time"])

JOIN_CUSTOMER_ROOM = "join-customer-room"
JOIN_ADMIN_ROOM = "join-admin-room"
JOIN_USER_ROOM = "join-user-room"
LEAVE_ROOM = "leave-room"


def handle_client_event(broadcaster: EventBroadcaster, settings: Settings, sid: str, frame: Any) -> List[str]:
    """Apply one client frame. Returns the rooms joined.

    Joins are not checked against the client's identity.
    """
    if not isinstance(frame, dict):
        logger.warning("ignoring malformed client frame", sid=sid)
        return []

    event = frame.get("event")
    data = frame.get("data")

    if event == JOIN_CUSTOMER_ROOM:
        rooms = [CUSTOMER_ROOM, owner_room(settings.customer_id)]
    elif event == JOIN_ADMIN_ROOM:
        rooms = [ADMIN_ROOM, owner_room(settings.admin_id)]
    elif event == JOIN_USER_ROOM:
        owner_id = data.get("ownerId") if isinstance(data, dict) else data
        if not isinstance(owner_id, str) or not owner_id:
            logger.warning("join-user-room without ownerId", sid=sid)
            return []
        rooms = [owner_room(owner_id)]
    elif event == LEAVE_ROOM:
        if isinstance(data, str):
            broadcaster.leave(sid, data)
        return []
    else:
        logger.warning("unknown client event", sid=sid, event_name=event)
        return []

    for room in rooms:
        broadcaster.join(sid, room)
    return rooms


async def _pump(websocket: WebSocket, subscriber: Subscriber) -> None:
    while True:
        message = await subscriber.next_message()
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.error("Failed to send WebSocket message", sid=subscriber.sid, error=str(e))
            return


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    broadcaster: EventBroadcaster = websocket.app.state.broadcaster
    settings: Settings = websocket.app.state.settings

    # Register before accept: anything emitted once the client is connected gets queued.
    subscriber = broadcaster.register()
    pump = None
    try:
        await websocket.accept()
        pump = asyncio.create_task(_pump(websocket, subscriber))
        while True:
            text = await websocket.receive_text()
            try:
                frame = json.loads(text)
            except ValueError:
                logger.warning("ignoring non-JSON client frame", sid=subscriber.sid)
                continue
            handle_client_event(broadcaster, settings, subscriber.sid, frame)
    except WebSocketDisconnect:
        pass
    finally:
        if pump is not None:
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
        broadcaster.unregister(subscriber.sid)


@router.get("/realtime/events")
async def realtime_events(request: Request, rooms: List[str] = Query(default=[])):
    """Server-Sent Events stream; no rooms means only broadcast-to-all events."""
    broadcaster: EventBroadcaster = request.app.state.broadcaster
    subscriber = broadcaster.register()
    for room in rooms:
        broadcaster.join(subscriber.sid, room)

    async def event_generator():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    message = await asyncio.wait_for(subscriber.next_message(), timeout=15)
                except asyncio.TimeoutError:
                    continue
                yield {"event": message["event"], "data": json.dumps(message["data"], default=str)}
        finally:
            broadcaster.unregister(subscriber.sid)

    return EventSourceResponse(event_generator())

"""
Connection Registry - realtime WebSocket connections grouped into rooms.

One instance is created at startup and held on `app.state.connections`;
the realtime channel and the /ws endpoint receive it explicitly.

Rooms: station:<id>, user:<id>, city:<name>, role:<role>
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, Set

from fastapi import WebSocketDisconnect

logger = logging.getLogger(__name__)


def station_room(station_id: str) -> str:
    return f"station:{station_id}"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def city_room(city: str) -> str:
    return f"city:{city.strip().lower()}"


def role_room(role: str) -> str:
    return f"role:{role}"


class ConnectionRegistry:
    def __init__(self):
        self._rooms: Dict[str, Set[Any]] = defaultdict(set)
        self._memberships: Dict[Any, Set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, websocket, rooms: Iterable[str] = ()) -> None:
        async with self._lock:
            for room in rooms:
                self._rooms[room].add(websocket)
                self._memberships[websocket].add(room)
        logger.info(f"Realtime connection joined {sorted(self._memberships[websocket])}")

    async def join(self, websocket, room: str) -> None:
        async with self._lock:
            self._rooms[room].add(websocket)
            self._memberships[websocket].add(room)

    async def leave(self, websocket, room: str) -> None:
        async with self._lock:
            self._rooms[room].discard(websocket)
            self._memberships[websocket].discard(room)
            if not self._rooms[room]:
                del self._rooms[room]

    async def disconnect(self, websocket) -> None:
        async with self._lock:
            for room in self._memberships.pop(websocket, set()):
                self._rooms[room].discard(websocket)
                if not self._rooms[room]:
                    del self._rooms[room]

    def rooms_for(self, websocket) -> Set[str]:
        return set(self._memberships.get(websocket, set()))

    def connection_count(self) -> int:
        return len(self._memberships)

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    async def emit(self, room: str, event: str, data: Dict[str, Any]) -> int:
        """Send an event to every socket in a room; returns how many received it."""
        async with self._lock:
            targets = list(self._rooms.get(room, ()))

        delivered = 0
        dead = []
        for websocket in targets:
            try:
                await websocket.send_json({"event": event, "room": room, "data": data})
                delivered += 1
            except (WebSocketDisconnect, RuntimeError, ConnectionError) as e:
                logger.info(f"Dropping dead realtime connection in {room}: {e}")
                dead.append(websocket)

        for websocket in dead:
            await self.disconnect(websocket)
        return delivered

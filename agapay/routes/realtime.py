"""
Realtime WebSocket endpoint.

Clients connect to /ws?token=<Firebase ID token>, are placed in their
default rooms, and may send {"action": "join" | "leave", "room": ...}
to follow city feeds.
"""

import logging
from typing import List

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from agapay.models.user import Principal
from agapay.services.connection_registry import ConnectionRegistry, city_room, role_room, station_room, user_room
from agapay.utils.security import principal_from_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


def default_rooms(principal: Principal) -> List[str]:
    rooms = [user_room(principal.id)]
    rooms.extend(role_room(role.value) for role in principal.roles)
    if principal.is_police and principal.police_station:
        rooms.append(station_room(principal.police_station))
    if principal.city:
        rooms.append(city_room(principal.city))
    return rooms


def normalize_room(room: str) -> str:
    if room.startswith("city:"):
        city = room[len("city:"):]
        return city_room(city) if city.strip() else ""
    return room


def may_join(principal: Principal, room: str) -> bool:
    """City feeds are public; every other room is limited to the principal's own."""
    return room.startswith("city:") or room in default_rooms(principal)


@router.websocket("/ws")
async def realtime(websocket: WebSocket, token: str = ""):
    try:
        principal = principal_from_token(token)
    except ValueError as e:
        logger.info(f"Rejected realtime connection: {e}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    registry: ConnectionRegistry = websocket.app.state.connections
    await websocket.accept()
    rooms = default_rooms(principal)
    await registry.connect(websocket, rooms)
    await websocket.send_json({"event": "connected", "data": {"rooms": rooms}})

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"event": "error", "data": {"msg": "Messages must be JSON"}})
                continue
            if not isinstance(message, dict):
                message = {}
            action = message.get("action")
            room = normalize_room(str(message.get("room") or "").strip())
            if action == "join" and room and may_join(principal, room):
                await registry.join(websocket, room)
                await websocket.send_json({"event": "joined", "data": {"room": room}})
            elif action == "leave" and room:
                await registry.leave(websocket, room)
                await websocket.send_json({"event": "left", "data": {"room": room}})
            else:
                await websocket.send_json({"event": "error", "data": {"msg": "Unsupported action or room"}})
    except WebSocketDisconnect:
        logger.info(f"Realtime connection closed for {principal.id}")
    finally:
        await registry.disconnect(websocket)

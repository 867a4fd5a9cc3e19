from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, Set

import socketio
from fastapi import WebSocket
from loguru import logger


def hospital_topic(hospital_id: str) -> str:
    return f"hospital-{hospital_id}"


def donor_topic(donor_id: str) -> str:
    return f"donor-{donor_id}"


class LiveUpdateHub:
    """Fire-and-forget fan-out of events to socket.io rooms and WebSocket subscribers."""

    def __init__(self, sio_server: socketio.AsyncServer) -> None:
        self.sio = sio_server
        self.websockets: Dict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, topic: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.websockets[topic].add(websocket)

    def disconnect(self, topic: str, websocket: WebSocket) -> None:
        self.websockets[topic].discard(websocket)
        if not self.websockets[topic]:
            self.websockets.pop(topic, None)

    async def publish(self, topic: str, event: str, payload: Dict[str, Any]) -> None:
        message = {"event": event, "payload": payload}
        stale = []
        for connection in list(self.websockets.get(topic, ())):
            try:
                await connection.send_json(message)
            except Exception:
                stale.append(connection)
        for connection in stale:
            self.disconnect(topic, connection)
        try:
            await self.sio.emit(event, payload, room=topic)
        except Exception as exc:
            logger.warning("Dropping {} event for {}: {}", event, topic, exc)

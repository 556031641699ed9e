import logging
from typing import Any, Dict, Optional

import socketio

logger = logging.getLogger(__name__)


def session_topic(session_id: str) -> str:
    return f"session:{session_id}"


class Notifier:
    """Real-time sink. Publishing is best-effort and never raises."""

    async def publish(self, topic: str, event: Dict[str, Any]) -> None:
        return None


class SocketIONotifier(Notifier):
    def __init__(self, sio: socketio.AsyncServer):
        self.sio = sio

    async def publish(self, topic: str, event: Dict[str, Any]) -> None:
        try:
            await self.sio.emit("attendance_update", event, room=topic)
            logger.debug(f"📡 Broadcast {event.get('type', 'attendance_update')} to {topic}")
        except Exception as e:
            logger.warning(f"⚠️ Error broadcasting via Socket.IO to {topic}: {e}")


def register_event_handlers(sio: socketio.AsyncServer):
    """Clients follow a session by joining its room."""

    @sio.event
    async def connect(sid, environ, auth):
        logger.info(f"🔗 Client connected: {sid}")
        await sio.emit("connection_status", {"status": "connected", "message": "Connected to attendance guard"}, room=sid)

    @sio.event
    async def disconnect(sid):
        logger.info(f"🔌 Client disconnected: {sid}")

    @sio.event
    async def join_session(sid, data):
        session_id = (data or {}).get("session_id")
        if not session_id:
            await sio.emit("join_error", {"error": "Missing session_id"}, room=sid)
            return
        await sio.enter_room(sid, session_topic(session_id))
        logger.info(f"👥 {sid} joined {session_topic(session_id)}")

    @sio.event
    async def leave_session(sid, data):
        session_id = (data or {}).get("session_id")
        if session_id:
            await sio.leave_room(sid, session_topic(session_id))


def init_socketio(sio: Optional[socketio.AsyncServer]) -> Notifier:
    """Register handlers and return the notifier the admission controller publishes through."""
    if sio is None:
        logger.warning("⚠️ Socket.IO server not initialized, notifications disabled")
        return Notifier()
    register_event_handlers(sio)
    logger.info("✅ Socket.IO manager initialized")
    return SocketIONotifier(sio)

import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from wardrobe_chat.services.errors import AuthError
from wardrobe_chat.services.realtime_gateway import RealtimeGateway


logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket, token: Optional[str] = None):
    gateway: RealtimeGateway = websocket.app.state.gateway
    conn = await gateway.connect(websocket)
    try:
        if token:
            try:
                await gateway.authenticate(conn, token)
            except AuthError:
                await websocket.close(code=4401)
                return
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await conn.send_event("error", {"message": "Invalid frame"})
                continue
            # Expect msg = {"event": str, "data": any}
            if not isinstance(msg, dict) or not isinstance(msg.get("event"), str):
                await conn.send_event("error", {"message": "Invalid frame"})
                continue
            try:
                await gateway.handle_event(conn, msg["event"], msg.get("data"))
            except WebSocketDisconnect:
                raise
            except Exception:
                logger.exception("socket_event_failed conn=%s event=%s", conn.id, msg["event"])
                await conn.send_event("error", {"message": "Internal server error"})
    except WebSocketDisconnect as exc:
        logger.debug("socket_closed conn=%s code=%s", conn.id, exc.code)
    finally:
        await gateway.disconnect(conn)

"""WebSocket endpoint for real-time execution updates."""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import logging
import json

from api.websockets.connection_manager import manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/executions/{execution_id}")
async def execution_events(websocket: WebSocket, execution_id: str):
    """
    Stream lifecycle events of one execution.

    Server pushes {"event": ..., "data": {...}} messages:
    - execution.started / execution.completed / execution.failed
    - step.started / step.completed / step.failed

    Clients may send {"type": "ping"} as keepalive, or
    {"type": "subscribe" | "unsubscribe", "execution_id": "..."} to
    follow further executions on the same socket.
    """
    await manager.connect(websocket, execution_id)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(msg, dict):
                continue

            kind = msg.get("type")
            if kind == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
            elif kind == "subscribe" and msg.get("execution_id"):
                manager.subscribe(websocket, str(msg["execution_id"]))
            elif kind == "unsubscribe" and msg.get("execution_id"):
                manager.unsubscribe(websocket, str(msg["execution_id"]))
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error for execution {execution_id}: {e}")
    finally:
        manager.disconnect(websocket)

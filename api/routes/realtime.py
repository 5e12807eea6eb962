"""
WebSocket channel carrying check lifecycle events to dashboard clients.
"""
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    service = websocket.app.state.service
    publisher = service.publisher

    await websocket.accept()
    publisher.register(websocket)
    try:
        await publisher.next_check(service.orchestrator.next_check_deadline, connection=websocket)
        # Clients only listen; incoming frames of either kind are drained until disconnect
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        publisher.unregister(websocket)

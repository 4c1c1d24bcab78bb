"""
WebSocket endpoint for quote and RFQ streaming.
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def quote_stream(websocket: WebSocket):
    """
    Stream quote and RFQ events.

    Clients authenticate with an AUTH message, then subscribe with FILTER
    messages per channel. Every client message gets an INFO or ERROR reply.
    """
    hub = websocket.app.state.gateway.hub
    state = await hub.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            await hub.handle_message(state, data)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(state)

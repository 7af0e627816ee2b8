import logging
from typing import Any, Dict
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from erp.api.dependencies import CurrentUser, get_channel_hub, get_current_user, user_from_token
from erp.services.notification.channel_hub import ChannelHub

router = APIRouter()
logger = logging.getLogger(__name__)

@router.websocket("/ws")
async def realtime_endpoint(
    websocket: WebSocket,
    token: str = Query(""),
):
    """Push channel: JSON envelopes {type, payload, timestamp, id}"""
    user = user_from_token(token)
    if user is None:
        logger.warning("Rejected realtime connection with invalid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return

    hub: ChannelHub = websocket.app.state.channel_hub
    await websocket.accept()
    client = await hub.connect(websocket, user.id)
    try:
        while True:
            text = await websocket.receive_text()
            await hub.handle_text(client.id, text)
    except WebSocketDisconnect as e:
        logger.info(f"Realtime client {client.id} closed (code={e.code})")
    finally:
        hub.disconnect(client.id)

@router.get("/stats")
async def get_realtime_stats(
    hub: ChannelHub = Depends(get_channel_hub),
    current_user: CurrentUser = Depends(get_current_user)
) -> Dict[str, Any]:
    return hub.get_stats()

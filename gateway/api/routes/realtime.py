"""
Realtime status channel.

Pushes every session snapshot to connected websocket clients as
``{"event": "qr-update", "data": snapshot}``. The current snapshot is sent
right after connect. Clients may identify themselves with
``{"type": "join-user", "userId": ...}`` and then receive the current
snapshot again, addressed to them.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from gateway.api.deps import get_app_settings, get_broadcaster
from gateway.api.middleware.auth import verify_realtime_token
from gateway.core.errors import SubscriberLimitReached
from gateway.core.session.broadcaster import StatusBroadcaster, Subscription

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])

QR_UPDATE_EVENT = "qr-update"


async def _send_snapshots(ws: WebSocket, subscription: Subscription) -> None:
    while True:
        snapshot = await subscription.queue.get()
        await ws.send_json({"event": QR_UPDATE_EVENT, "data": snapshot.to_dict()})


async def _receive_messages(
    ws: WebSocket,
    broadcaster: StatusBroadcaster,
    subscription: Subscription,
) -> None:
    while True:
        message = await ws.receive_json()
        if not isinstance(message, dict):
            continue

        if message.get("type") == "join-user" and message.get("userId") is not None:
            broadcaster.identify(subscription, message["userId"])
            broadcaster.send_to(subscription.user_id)
        else:
            logger.debug(f"Ignored realtime message | Subscriber: {subscription.id} | Type: {message.get('type')}")


@router.websocket("/ws/whatsapp")
async def whatsapp_socket(
    ws: WebSocket,
    token: Optional[str] = None,
    broadcaster: StatusBroadcaster = Depends(get_broadcaster),
) -> None:
    client_ip = ws.client.host if ws.client else "unknown"

    if not verify_realtime_token(token, get_app_settings(ws)):
        logger.warning(f"Realtime auth failed | IP: {client_ip}")
        await ws.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await ws.accept()

    try:
        subscription = broadcaster.subscribe()
    except SubscriberLimitReached as e:
        await ws.send_json({"event": "error", "data": {"message": e.public_message}})
        await ws.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return

    sender = asyncio.create_task(_send_snapshots(ws, subscription))
    receiver = asyncio.create_task(_receive_messages(ws, broadcaster, subscription))
    try:
        done, pending = await asyncio.wait(
            {sender, receiver},
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.debug(f"Realtime connection ended | Subscriber: {subscription.id} | Error: {error}")
    except asyncio.CancelledError:
        sender.cancel()
        receiver.cancel()
        raise
    finally:
        broadcaster.unsubscribe(subscription)
        try:
            await ws.close()
        except Exception:
            pass

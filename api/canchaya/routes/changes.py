"""Real-time change feed over a websocket.

Browsers cannot set headers on a websocket handshake, so the access token
travels as the `token` query parameter. `table` narrows the stream to one
of courts, customers or bookings.
"""

import asyncio
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from jose import JWTError

from canchaya.core.auth import user_from_token
from canchaya.services.change_feed import TABLES, ChangeFeed

logger = logging.getLogger(__name__)

router = APIRouter(tags=["changes"])


@router.websocket("/changes")
async def stream_changes(
    websocket: WebSocket,
    token: str = Query(""),
    table: str | None = Query(None),
):
    try:
        user = user_from_token(token)
    except JWTError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return

    if table is not None and table not in TABLES:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=f"Unknown table: {table}")
        return

    feed: ChangeFeed = websocket.app.state.change_feed
    # Subscribe before accepting so nothing published after the handshake is missed
    queue = feed.subscribe(table)
    await websocket.accept()
    logger.info("Change feed client connected: user=%s table=%s", user.id, table or "*")

    async def forward() -> None:
        async for event in feed.listen(queue):
            await websocket.send_json(event.to_dict())

    async def watch() -> None:
        # Clients have nothing to say; receive() is how a dropped connection shows up
        while (await websocket.receive())["type"] != "websocket.disconnect":
            pass

    sender = asyncio.create_task(forward())
    watcher = asyncio.create_task(watch())
    try:
        done, _ = await asyncio.wait({sender, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sender, watcher):
            task.cancel()
        await asyncio.gather(sender, watcher, return_exceptions=True)
        feed.unsubscribe(queue)

    if sender in done:
        exc = sender.exception()
        if exc is None:
            # The feed stopped: the application is shutting down
            await websocket.close(code=status.WS_1001_GOING_AWAY)
            return
        if not isinstance(exc, WebSocketDisconnect):
            raise exc

    logger.info("Change feed client disconnected: user=%s", user.id)

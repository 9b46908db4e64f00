"""
WebSocket route streaming row changes to dashboard clients.

Clients connect to ``/ws/changes?tables=executions,execution_nodes`` and
receive one ``change`` message per write to those tables. An empty table
list receives every watched table. The table set can be replaced at any
time by sending ``{"action": "subscribe", "tables": [...]}``.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

from fastapi import Query, WebSocket, WebSocketDisconnect
from fastapi.routing import APIRouter

from ...core.logging import get_logger
from ...core.realtime import Subscription, get_change_feed
from ...core.realtime.signals import watched_tables

logger = get_logger(__name__)

websocket_router = APIRouter(prefix="/ws", tags=["websocket"])


def parse_tables(tables: Optional[str]) -> List[str]:
    """Split a comma separated ``tables`` query value."""
    if not tables:
        return []
    return [table.strip() for table in tables.split(",") if table.strip()]


def unknown_tables(tables: List[str]) -> List[str]:
    known = set(watched_tables())
    return [table for table in tables if table not in known]


async def _forward_changes(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json({"type": "change", **event.to_message()})


async def _handle_message(
    websocket: WebSocket, subscription: Subscription, data: str
) -> None:
    try:
        message: Dict[str, Any] = json.loads(data)
    except json.JSONDecodeError:
        await websocket.send_json({"type": "error", "message": "Invalid JSON message"})
        return

    if not isinstance(message, dict):
        await websocket.send_json({"type": "error", "message": "Invalid message"})
        return

    if message.get("action") == "subscribe":
        tables = message.get("tables") or []
        if not isinstance(tables, list):
            await websocket.send_json(
                {"type": "error", "message": "tables must be a list"}
            )
            return
        unknown = unknown_tables(tables)
        if unknown:
            await websocket.send_json(
                {"type": "error", "message": f"Unknown tables: {', '.join(unknown)}"}
            )
            return
        await subscription.set_tables(tables)
        await websocket.send_json({"type": "subscribed", "tables": sorted(tables)})
    elif message.get("type") == "ping" or message.get("action") == "ping":
        await websocket.send_json({"type": "pong"})
    else:
        action = message.get("action") or message.get("type")
        await websocket.send_json(
            {"type": "error", "message": f"Unknown action: {action}"}
        )


async def _receive_messages(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        data = await websocket.receive_text()
        await _handle_message(websocket, subscription, data)


@websocket_router.websocket("/changes")
async def changes_websocket_endpoint(
    websocket: WebSocket, tables: Optional[str] = Query(None)
) -> None:
    """Stream change events for the requested tables."""
    requested = parse_tables(tables)
    await websocket.accept()

    unknown = unknown_tables(requested)
    if unknown:
        await websocket.send_json(
            {"type": "error", "message": f"Unknown tables: {', '.join(unknown)}"}
        )
        await websocket.close(code=1008)
        return

    subscription = await get_change_feed().subscribe(requested)
    await websocket.send_json({"type": "subscribed", "tables": sorted(requested)})
    logger.info("Change feed client connected", tables=sorted(requested))

    forward = asyncio.create_task(_forward_changes(websocket, subscription))
    receive = asyncio.create_task(_receive_messages(websocket, subscription))
    try:
        done, _ = await asyncio.wait(
            {forward, receive}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.error("Change feed connection failed", error=str(error))
    finally:
        for task in (forward, receive):
            task.cancel()
        await asyncio.gather(forward, receive, return_exceptions=True)
        await subscription.close()
        logger.info("Change feed client disconnected")

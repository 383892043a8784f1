"""WebSocket handler streaming macro logs.

Clients receive the last few buffered log lines on connect and every new
line afterwards. Text messages ``stop`` and ``status`` are accepted as
shortcuts for the matching HTTP endpoints.

Example:
    # Set up WebSocket handler in aiohttp app
    app.router.add_get('/ws', websocket_handler)
"""
from __future__ import annotations

import json
import logging
from typing import Set

from aiohttp import WSMsgType, web

from scripting.server import ScriptingInterface

logger = logging.getLogger(__name__)


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    """Handle one WebSocket connection until the client disconnects."""
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    app = request.app
    connections: Set[web.WebSocketResponse] = app['websocket_connections']
    connections.add(ws)

    await send_message(ws, {'type': 'status', 'msg': 'connected'})
    for line in list(app['log_buffer']):
        await send_message(ws, {'type': 'log', 'message': line})

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await _handle_text(ws, msg.data.strip().lower(), app['service'])
            elif msg.type == WSMsgType.ERROR:
                break
    finally:
        connections.discard(ws)

    return ws


async def send_message(ws: web.WebSocketResponse, data: dict) -> None:
    """Send a JSON message, ignoring connections that already closed."""
    if ws.closed:
        return
    try:
        await ws.send_str(json.dumps(data))
    except ConnectionError as e:
        logger.debug(f'WebSocket send failed: {e}')


async def _handle_text(ws: web.WebSocketResponse, text: str, service: ScriptingInterface) -> None:
    if text == 'stop':
        stopped = service.stop()
        await send_message(ws, {'type': 'status', 'msg': 'stopping' if stopped else 'idle'})
    elif text == 'status':
        await send_message(ws, {'type': 'status', **service.status()})
    else:
        await send_message(ws, {'type': 'error', 'msg': f'unknown command: {text}'})

"""HTTP control API for the macro runner.

create_app(service) builds an aiohttp application around a shared
ScriptingInterface, the same instance the TCP scripting server uses, so
HTTP and TCP clients see one set of variables and one running macro.
start_server() runs it on an AppRunner/TCPSite pair inside an existing
event loop.
"""
from __future__ import annotations

import asyncio
import collections
import logging

from aiohttp import web

from scripting.server import ScriptingInterface

from . import handlers
from .handlers.websocket import send_message

logger = logging.getLogger(__name__)

LOG_BUFFER_SIZE = 10


def setup_routes(app: web.Application) -> None:
    """Configure all application routes."""
    app.router.add_get('/ws', handlers.websocket_handler)

    app.router.add_get('/api/macros', handlers.list_macros)
    app.router.add_get('/api/macro/{name:.+}', handlers.get_macro)
    app.router.add_post('/api/play', handlers.play)

    app.router.add_post('/api/set', handlers.set_variable)
    app.router.add_post('/api/stop', handlers.stop)
    app.router.add_get('/api/status', handlers.status)
    app.router.add_get('/api/extract', handlers.extract)


async def broadcast_logs(app: web.Application) -> None:
    """Forward macro log lines to the log buffer and every WebSocket."""
    service: ScriptingInterface = app['service']
    log_queue = service.runner.logs()
    while True:
        line = await log_queue.get()
        app['log_buffer'].append(line)
        for ws in list(app['websocket_connections']):
            await send_message(ws, {'type': 'log', 'message': line})


async def on_startup(app: web.Application) -> None:
    app['log_broadcast_task'] = asyncio.create_task(broadcast_logs(app))


async def on_shutdown(app: web.Application) -> None:
    task = app.get('log_broadcast_task')
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    for ws in list(app['websocket_connections']):
        await ws.close()


def create_app(service: ScriptingInterface) -> web.Application:
    """Create the control API application.

    Args:
        service: Shared scripting interface that plays the macros.
    """
    app = web.Application()
    app['service'] = service
    app['log_buffer'] = collections.deque(maxlen=LOG_BUFFER_SIZE)
    app['websocket_connections'] = set()

    setup_routes(app)
    app.on_startup.append(on_startup)
    app.on_shutdown.append(on_shutdown)
    return app


async def start_server(service: ScriptingInterface, host: str = '127.0.0.1', port: int = 8080) -> web.AppRunner:
    """Start serving the control API without blocking.

    Returns:
        The AppRunner; call ``await runner.cleanup()`` to stop serving.
    """
    runner = web.AppRunner(create_app(service))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f'HTTP control API listening on http://{host}:{port}')
    return runner

"""Control API handlers.

This module provides HTTP API endpoints for setting macro variables,
stopping the running macro and reading run status and extracted data.

Example:
    # Register control endpoints
    app.router.add_post('/api/stop', stop)
    app.router.add_get('/api/status', status)
"""
from __future__ import annotations

from aiohttp import web

from scripting.server import ScriptingInterface


async def set_variable(request: web.Request) -> web.Response:
    """Store a variable for the next play.

    Expects JSON body with:
    - name: Variable name (``-var_NAME`` and ``varN`` aliases accepted)
    - value: Value to store

    Returns:
        JSON with the normalized variable name, 400 for a bad body.
    """
    try:
        data = await request.json()
    except ValueError:
        return web.Response(status=400, text='Invalid JSON body')

    name = data.get('name')
    if not isinstance(name, str) or not name.strip():
        return web.Response(status=400, text='name must be non-empty string')
    value = data.get('value', '')

    service: ScriptingInterface = request.app['service']
    key = service.set_variable(name, '' if value is None else str(value))
    return web.json_response({'status': 'ok', 'name': key})


async def stop(request: web.Request) -> web.Response:
    """Signal the running macro to stop."""
    service: ScriptingInterface = request.app['service']
    stopped = service.stop()
    return web.json_response({
        'status': 'ok',
        'message': 'Stop requested' if stopped else 'No macro is running',
    })


async def status(request: web.Request) -> web.Response:
    service: ScriptingInterface = request.app['service']
    return web.json_response(service.status())


async def extract(request: web.Request) -> web.Response:
    service: ScriptingInterface = request.app['service']
    return web.json_response({'values': list(service.last_extract)})

"""Macro API handlers.

This module provides HTTP API endpoints for listing and reading the macro
files under the scripting interface's macros folder, and for playing a
macro through the shared ScriptingInterface.

Example:
    # Register macro endpoints
    app.router.add_get('/api/macros', list_macros)
    app.router.add_post('/api/play', play)
"""
from __future__ import annotations

from aiohttp import web

from scripting.protocol import ReturnCode
from scripting.server import MacroNotFoundError, ScriptingInterface


async def list_macros(request: web.Request) -> web.Response:
    """List all available macro files.

    Returns:
        JSON array of ``.iim`` paths relative to the macros folder, sorted
        alphabetically. Empty if the folder doesn't exist.
    """
    service: ScriptingInterface = request.app['service']
    return web.json_response(service.list_macros())


async def get_macro(request: web.Request) -> web.Response:
    """Get the content of a specific macro file.

    Args:
        request: The aiohttp web request with 'name' path parameter.

    Returns:
        Plain text response with macro file content, 404 if the macro
        doesn't exist or lies outside the macros folder.
    """
    service: ScriptingInterface = request.app['service']
    name = request.match_info['name']
    try:
        path = service.resolve_macro(name)
    except MacroNotFoundError:
        return web.Response(status=404, text=f'Macro "{name}" not found')

    try:
        content = path.read_text(encoding='utf-8')
    except OSError as e:
        return web.Response(status=500, text=f'Error reading macro: {e}')
    return web.Response(text=content, content_type='text/plain')


async def play(request: web.Request) -> web.Response:
    """Play a macro and wait for it to finish.

    Expects JSON body with:
    - name: Macro file name or ``CODE:`` inline macro
    - timeout: Optional timeout in seconds

    Returns:
        JSON ``{code, message, extract}`` where code is the scripting
        ReturnCode. HTTP 409 if a macro is already running, 404 if the
        macro doesn't exist.
    """
    try:
        data = await request.json()
    except ValueError:
        return web.Response(status=400, text='Invalid JSON body')

    name = data.get('name')
    if not isinstance(name, str) or not name.strip():
        return web.Response(status=400, text='name must be non-empty string')

    timeout = data.get('timeout')
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
        return web.Response(status=400, text='timeout must be a positive number')

    service: ScriptingInterface = request.app['service']
    code, message = await service.play(name, timeout)

    status = 200
    if code == ReturnCode.MACRO_RUNNING:
        status = 409
    elif code == ReturnCode.MACRO_NOT_FOUND:
        status = 404
    return web.json_response({
        'code': int(code),
        'message': message or 'OK',
        'extract': list(service.last_extract),
    }, status=status)

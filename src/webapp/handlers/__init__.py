"""Webapp handlers package.

This package provides the HTTP and WebSocket handlers of the control API,
organized by functionality:

- macros: Macro listing, reading and playing
- control: Variables, stop, status and extracted data
- websocket: Live log streaming

Example:
    from webapp.handlers import list_macros, play
    app.router.add_get('/api/macros', list_macros)
"""
from __future__ import annotations

from .control import extract, set_variable, status, stop
from .macros import get_macro, list_macros, play
from .websocket import websocket_handler

__all__ = [
    'websocket_handler',
    'list_macros',
    'get_macro',
    'play',
    'set_variable',
    'stop',
    'status',
    'extract',
]

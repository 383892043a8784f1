"""Bridge interfaces and implementations.

This package isolates the macro engine from the browser, file system and
process table:

- base: abstract bridges, BridgeResponse and the Bridges container
- local: sandboxed files, subprocess EXEC and the headless browser
- native: browser bridge over a native messaging stream
- factory: create_bridges() from a RuntimeConfig
"""
from __future__ import annotations

from .base import (
    BridgeResponse,
    Bridges,
    BrowserBridge,
    CmdlineExecutor,
    CmdlineResult,
    ContentScriptSender,
    FileBridge,
    PrintService,
    call_bridge,
    make_message,
)
from .local import LocalFileBridge, NullBrowserBridge, SubprocessCmdlineExecutor

__all__ = [
    'BridgeResponse',
    'Bridges',
    'BrowserBridge',
    'CmdlineExecutor',
    'CmdlineResult',
    'ContentScriptSender',
    'FileBridge',
    'PrintService',
    'call_bridge',
    'make_message',
    'LocalFileBridge',
    'NullBrowserBridge',
    'SubprocessCmdlineExecutor',
]

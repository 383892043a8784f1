"""Bridge interfaces between the macro engine and the outside world.

Handlers never touch the browser, file system or process table directly.
They talk to the narrow bridge interfaces defined here, which are injected
into the executor through a Bridges container. Concrete implementations
live in ``bridges.local`` and ``bridges.native``; tests pass their own
recording stubs.

The module provides:
    - BridgeResponse and CmdlineResult result types
    - BrowserBridge, ContentScriptSender, FileBridge, CmdlineExecutor and
      PrintService abstract base classes
    - Bridges, the container handed to MacroExecutor
    - make_message() and call_bridge() helpers used by handlers

Example:
    Implementing a browser bridge::

        class MyBrowser(BrowserBridge):
            async def send_message(self, message):
                if message['type'] == 'navigate':
                    await self.page.goto(message['url'])
                    return BridgeResponse.ok()
                return BridgeResponse.fail(f"unsupported: {message['type']}")
"""
from __future__ import annotations

import abc
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BridgeResponse:
    """Uniform reply from a bridge call.

    Attributes:
        success: Whether the operation succeeded.
        data: Optional payload (e.g. ``{'url': ...}`` for getCurrentUrl).
        error: Error text when success is False.
    """

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None) -> 'BridgeResponse':
        return cls(True, data, None)

    @classmethod
    def fail(cls, error: str) -> 'BridgeResponse':
        return cls(False, None, error)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'BridgeResponse':
        """Build a response from a decoded ``{success, data?, error?}`` message."""
        return cls(bool(payload.get('success')), payload.get('data'), payload.get('error'))


@dataclass(frozen=True)
class CmdlineResult:
    """Result of an external process launch."""

    exit_code: int
    stdout: str = ''
    stderr: str = ''


class BrowserBridge(abc.ABC):
    """Tab and frame level browser operations.

    Messages are dicts with a ``type`` of navigate, goBack, refresh,
    getCurrentUrl, selectFrame, switchTab, openTab, closeTab or
    closeOtherTabs, plus the operation's own fields.
    """

    @abc.abstractmethod
    async def send_message(self, message: Dict[str, Any]) -> BridgeResponse:
        """Perform one browser operation."""


class ContentScriptSender(abc.ABC):
    """DOM level operations carried out inside the page.

    Messages are dicts with a ``type`` of CLICK_COMMAND or GET_SOURCE and a
    ``payload`` dict.
    """

    @abc.abstractmethod
    async def send_message(self, message: Dict[str, Any]) -> BridgeResponse:
        """Perform one in-page operation."""


class FileBridge(abc.ABC):
    """File operations under a sandboxed macros root.

    Messages are dicts with a ``type`` of fileDelete, fileRead or fileWrite
    and a ``path`` relative to the sandbox root.
    """

    @abc.abstractmethod
    async def send_message(self, message: Dict[str, Any]) -> BridgeResponse:
        """Perform one file operation."""


class CmdlineExecutor(abc.ABC):
    """Launches external processes for EXEC."""

    @abc.abstractmethod
    async def execute(self, command: str, timeout: float = 30.0, wait: bool = True) -> CmdlineResult:
        """Run a shell command.

        Args:
            command: Command line to run.
            timeout: Seconds to wait before giving up.
            wait: If False, start the process and return immediately.
        """


class PrintService(abc.ABC):
    """Optional printing support for PRINT."""

    @abc.abstractmethod
    async def print(self, options: Dict[str, Any]) -> BridgeResponse:
        """Print the current page."""


@dataclass
class Bridges:
    """Bridge instances handed to a MacroExecutor.

    Any bridge may be None; handlers that need a missing bridge fail with
    a clear message instead of crashing.
    """

    browser: Optional[BrowserBridge] = None
    content: Optional[ContentScriptSender] = None
    files: Optional[FileBridge] = None
    cmdline: Optional[CmdlineExecutor] = None
    printer: Optional[PrintService] = None


def make_message(message_type: str, **fields: Any) -> Dict[str, Any]:
    """Build a bridge message with a unique id and a millisecond timestamp."""
    message: Dict[str, Any] = {
        'id': uuid.uuid4().hex,
        'type': message_type,
        'timestamp': int(time.time() * 1000),
    }
    message.update({key: value for key, value in fields.items() if value is not None})
    return message


async def call_bridge(bridge: Any, message: Dict[str, Any]) -> BridgeResponse:
    """Send a message to a bridge, converting exceptions to failed responses.

    Args:
        bridge: Any object with an async ``send_message`` method, or None.
        message: Message built with make_message().

    Returns:
        The bridge's response. A missing bridge, a raised exception or a
        plain dict reply are all normalized to a BridgeResponse.
    """
    if bridge is None:
        return BridgeResponse.fail(f"No bridge configured for {message.get('type')}")
    try:
        response = await bridge.send_message(message)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning(f"Bridge operation {message.get('type')} failed: {e}")
        return BridgeResponse.fail(str(e) or e.__class__.__name__)
    if isinstance(response, dict):
        return BridgeResponse.from_dict(response)
    return response
